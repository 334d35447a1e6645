"""Re-hosting of remote image assets into the target account's storage."""

import asyncio
import logging
import mimetypes
import posixpath
import time
import uuid
from typing import Any
from urllib.parse import urlparse

import httpx

from vitrine_clone.api.client import APIError

logger = logging.getLogger(__name__)

IMAGE_FETCH_TIMEOUT = 30.0
MAX_IMAGE_BYTES = 10 * 1024 * 1024
DEFAULT_EXTENSION = "jpg"
PRODUCT_IMAGE_FOLDER = "products"
USER_AGENT = "VitrineClone/1.0"


class ImageFetchError(Exception):
    """Raised when a source image cannot be downloaded or is unusable."""


def file_extension(url: str) -> str:
    """Extension of the file a URL points to, ignoring query and fragment.

    >>> file_extension("https://cdn.example.com/a/photo.PNG?width=300")
    'PNG'
    >>> file_extension("https://cdn.example.com/a/photo")
    'jpg'
    """
    path = urlparse(url).path
    _, ext = posixpath.splitext(posixpath.basename(path))
    return ext[1:] if len(ext) > 1 else DEFAULT_EXTENSION


def new_file_name(owner_id: str, source_url: str) -> str:
    """Unique object name: {owner}-{timestamp ms}-{random token}.{ext}."""
    timestamp = int(time.time() * 1000)
    token = uuid.uuid4().hex[:9]
    return f"{owner_id}-{timestamp}-{token}.{file_extension(source_url)}"


async def fetch_image(
    fetcher: httpx.AsyncClient,
    url: str,
    timeout: float = IMAGE_FETCH_TIMEOUT,
    max_bytes: int = MAX_IMAGE_BYTES,
) -> tuple[bytes, str]:
    """Download an image once, enforcing a hard timeout and a size cap.

    The body is streamed and the download is abandoned as soon as it grows
    past max_bytes, whether or not the host sent a content-length.

    Returns:
        (content, content_type)

    Raises:
        ImageFetchError: on timeout, network error, non-2xx status or oversize payload
    """
    try:
        return await asyncio.wait_for(_download(fetcher, url, timeout, max_bytes), timeout=timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise ImageFetchError(f"Timed out after {timeout:.0f}s downloading image {url}") from e
    except httpx.HTTPError as e:
        raise ImageFetchError(f"Failed to download image {url}: {e}") from e


async def _download(fetcher: httpx.AsyncClient, url: str, timeout: float, max_bytes: int) -> tuple[bytes, str]:
    limit_mb = max_bytes / (1024 * 1024)
    async with fetcher.stream(
        "GET", url, headers={"User-Agent": USER_AGENT}, timeout=timeout, follow_redirects=True
    ) as response:
        if not response.is_success:
            raise ImageFetchError(f"Failed to download image {url}: HTTP {response.status_code}")

        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > max_bytes:
            raise ImageFetchError(f"Image too large ({content_length} bytes > {limit_mb:g}MB), skipping {url}")

        chunks = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > max_bytes:
                raise ImageFetchError(f"Image too large (over {limit_mb:g}MB), skipping {url}")
            chunks.append(chunk)

        content_type = response.headers.get("content-type", "").split(";")[0].strip()

    if not content_type:
        content_type = mimetypes.guess_type(urlparse(url).path)[0] or "application/octet-stream"
    return b"".join(chunks), content_type


async def duplicate_image(
    db: Any,
    fetcher: httpx.AsyncClient,
    image: dict,
    target_product_id: str,
) -> tuple[dict | None, str | None]:
    """Copy one product image into storage and register it on the target product.

    Each image is attempted exactly once. When the image row cannot be saved
    the freshly uploaded object is removed again (best effort).

    Args:
        db: Row/blob store client
        fetcher: HTTP client used to download the source image
        image: Source image row (url, is_featured)
        target_product_id: Product that will own the copy

    Returns:
        ({"url": new_public_url, "is_featured": bool}, None) on success
        (None, error_message) when the image was skipped
    """
    source_url = image.get("url")
    if not source_url:
        return None, "Image has no URL, skipping"

    try:
        content, content_type = await fetch_image(fetcher, source_url)
    except ImageFetchError as e:
        return None, str(e)

    file_path = f"{PRODUCT_IMAGE_FOLDER}/{new_file_name(target_product_id, source_url)}"

    try:
        await db.upload(file_path, content, content_type)
    except APIError as e:
        return None, f"Upload error for {source_url}: {e.message}"

    public_url = db.get_public_url(file_path)
    is_featured = bool(image.get("is_featured"))

    try:
        await db.insert(
            "product_images",
            {"product_id": target_product_id, "url": public_url, "is_featured": is_featured},
        )
    except APIError as e:
        try:
            await db.remove([file_path])
        except APIError as cleanup_error:
            logger.warning("Could not remove orphaned upload %s: %s", file_path, cleanup_error.message)
        return None, f"Failed to save image reference for {source_url}: {e.message}"

    logger.debug("Image cloned: %s -> %s", source_url, file_path)
    return {"url": public_url, "is_featured": is_featured}, None


async def copy_profile_image(
    db: Any,
    fetcher: httpx.AsyncClient,
    source_url: str,
    owner_id: str,
    field_name: str,
    folder: str,
) -> str | None:
    """Copy a profile image (avatar, cover, banner) for a new account.

    Same fetch/upload policy as product images, but there is no image row to
    compensate for, so failures simply leave the field unset.

    Returns:
        The new public URL, or None when the copy was skipped
    """
    try:
        content, content_type = await fetch_image(fetcher, source_url)
    except ImageFetchError as e:
        logger.warning("Failed to copy %s: %s", field_name, e)
        return None

    timestamp = int(time.time() * 1000)
    file_path = f"{folder}/{owner_id}-{field_name}-{timestamp}.{file_extension(source_url)}"
    try:
        await db.upload(file_path, content, content_type)
    except APIError as e:
        logger.warning("Failed to upload %s: %s", field_name, e.message)
        return None

    logger.info("Copied %s successfully", field_name)
    return db.get_public_url(file_path)
