"""Tests for image re-hosting."""

import asyncio

import pytest

from vitrine_clone.clone import clone_product_images
from vitrine_clone.images import (
    ImageFetchError,
    copy_profile_image,
    duplicate_image,
    fetch_image,
    file_extension,
    new_file_name,
)


def with_fetcher(image_host, make_coro):
    """Run make_coro(fetcher) with a client backed by the fake image host."""

    async def runner():
        async with image_host.client() as fetcher:
            return await make_coro(fetcher)

    return asyncio.run(runner())


class TestFileExtension:
    """Tests for file_extension function."""

    def test_plain_extension(self):
        """Should return the extension without the dot."""
        assert file_extension("https://cdn.example.com/a/photo.png") == "png"

    def test_ignores_query_string(self):
        """Query parameters should not leak into the extension."""
        assert file_extension("https://cdn.example.com/photo.webp?width=300&v=2") == "webp"

    def test_defaults_to_jpg(self):
        """URLs without an extension should default to jpg."""
        assert file_extension("https://cdn.example.com/images/12345") == "jpg"
        assert file_extension("https://cdn.example.com/") == "jpg"


class TestNewFileName:
    """Tests for new_file_name function."""

    def test_format(self):
        """Should combine owner, timestamp, token and extension."""
        name = new_file_name("prod-9", "https://cdn.example.com/x.gif")
        timestamp, rest = name[len("prod-9-"):].split("-")
        token, ext = rest.split(".")

        assert name.startswith("prod-9-")
        assert timestamp.isdigit()
        assert len(token) == 9
        assert ext == "gif"

    def test_unique(self):
        """Two names for the same inputs should differ."""
        url = "https://cdn.example.com/x.gif"
        assert new_file_name("p", url) != new_file_name("p", url)


class TestFetchImage:
    """Tests for fetch_image function."""

    def test_success(self, image_host):
        """Should return the bytes and content type."""
        url = image_host.add("a.png", b"png-bytes")

        content, content_type = with_fetcher(image_host, lambda f: fetch_image(f, url))

        assert content == b"png-bytes"
        assert content_type == "image/png"

    def test_timeout(self, image_host):
        """A timed-out download should raise with a timeout message."""
        url = image_host.add("slow.jpg")
        image_host.timeouts.add(url)

        with pytest.raises(ImageFetchError, match="Timed out"):
            with_fetcher(image_host, lambda f: fetch_image(f, url))

    def test_http_error(self, image_host):
        """A non-2xx response should raise with the status code."""
        url = image_host.add("gone.jpg")
        image_host.statuses[url] = 404

        with pytest.raises(ImageFetchError, match="HTTP 404"):
            with_fetcher(image_host, lambda f: fetch_image(f, url))

    def test_too_large(self, image_host):
        """Payloads over the size cap should be refused."""
        url = image_host.add("big.jpg", b"x" * 64)

        with pytest.raises(ImageFetchError, match="too large"):
            with_fetcher(image_host, lambda f: fetch_image(f, url, max_bytes=32))

    def test_chunked_oversize_stops_early(self, image_host):
        """A chunked body without content-length should be abandoned once over the cap."""
        url = image_host.stream("endless.jpg", b"x" * 1024, 40)

        with pytest.raises(ImageFetchError, match="too large"):
            with_fetcher(image_host, lambda f: fetch_image(f, url, max_bytes=4 * 1024))

        assert image_host.bytes_sent <= 5 * 1024

    def test_chunked_within_limit(self, image_host):
        """A chunked body under the cap should be reassembled in full."""
        url = image_host.stream("chunked.jpg", b"ab", 3)

        content, content_type = with_fetcher(image_host, lambda f: fetch_image(f, url))

        assert content == b"ababab"
        assert content_type == "image/jpeg"

    def test_single_attempt(self, image_host):
        """A failing image should be requested exactly once."""
        url = image_host.add("flaky.jpg")
        image_host.statuses[url] = 503

        with pytest.raises(ImageFetchError):
            with_fetcher(image_host, lambda f: fetch_image(f, url))

        assert image_host.requests == [url]


class TestDuplicateImage:
    """Tests for duplicate_image function."""

    def test_success(self, store, image_host):
        """Should upload the bytes and register a row on the target product."""
        url = image_host.add("a.png", b"png-bytes")
        image = {"id": "img-1", "url": url, "is_featured": True}

        copied, error = with_fetcher(image_host, lambda f: duplicate_image(store, f, image, "new-prod"))

        assert error is None
        assert copied["is_featured"] is True
        assert copied["url"].startswith("https://project.example.co/storage/v1/object/public/public/products/new-prod-")
        assert copied["url"].endswith(".png")
        assert list(store.blobs.values()) == [b"png-bytes"]
        rows = store.rows("product_images", product_id="new-prod")
        assert rows[0]["url"] == copied["url"]

    def test_missing_url(self, store, image_host):
        """Rows without a URL should be skipped."""
        copied, error = with_fetcher(image_host, lambda f: duplicate_image(store, f, {"id": "x"}, "p"))

        assert copied is None
        assert "no URL" in error

    def test_upload_failure(self, store, image_host):
        """A failed upload should produce an error and no image row."""
        url = image_host.add("a.png")
        store.fail("upload", None, "bucket not found")

        copied, error = with_fetcher(image_host, lambda f: duplicate_image(store, f, {"url": url}, "p"))

        assert copied is None
        assert error == f"Upload error for {url}: bucket not found"
        assert store.rows("product_images") == []

    def test_row_failure_removes_upload(self, store, image_host):
        """When the image row cannot be saved the uploaded object is removed."""
        url = image_host.add("a.png")
        store.fail("insert", "product_images", "violates foreign key constraint")

        copied, error = with_fetcher(image_host, lambda f: duplicate_image(store, f, {"url": url}, "p"))

        assert copied is None
        assert "Failed to save image reference" in error
        assert store.blobs == {}
        assert ("remove", None) in store.calls

    def test_row_failure_with_failed_cleanup(self, store, image_host):
        """A failed cleanup should still return the original error."""
        url = image_host.add("a.png")
        store.fail("insert", "product_images", "row error")
        store.fail("remove", None, "storage down")

        copied, error = with_fetcher(image_host, lambda f: duplicate_image(store, f, {"url": url}, "p"))

        assert copied is None
        assert "row error" in error


class TestCloneProductImages:
    """Tests for clone_product_images function."""

    def test_featured_copied_and_timeout_recorded(self, store, image_host):
        """Featured A succeeds, B times out: one copy, featured URL set, one error."""
        store.add("products", id="new-prod", user_id="target-user", title="Shoe")
        url_a = image_host.add("a.png")
        url_b = image_host.add("b.jpg")
        image_host.timeouts.add(url_b)
        store.add("product_images", product_id="src-prod", url=url_a, is_featured=True)
        store.add("product_images", product_id="src-prod", url=url_b, is_featured=False)

        cloned, errors = with_fetcher(
            image_host, lambda f: clone_product_images(store, f, "src-prod", "new-prod")
        )

        product = store.rows("products", id="new-prod")[0]
        new_rows = store.rows("product_images", product_id="new-prod")
        assert cloned == 1
        assert len(errors) == 1
        assert "Timed out" in errors[0]
        assert url_b in errors[0]
        assert product["featured_image_url"] == new_rows[0]["url"]
        assert product["featured_image_url"] != url_a

    def test_last_featured_image_wins(self, store, image_host):
        """With several featured images the last one processed is featured."""
        store.add("products", id="new-prod", user_id="target-user", title="Shoe")
        store.add("product_images", product_id="src-prod", url=image_host.add("first.png"), is_featured=True)
        store.add("product_images", product_id="src-prod", url=image_host.add("second.webp"), is_featured=True)

        cloned, errors = with_fetcher(
            image_host, lambda f: clone_product_images(store, f, "src-prod", "new-prod")
        )

        product = store.rows("products", id="new-prod")[0]
        assert cloned == 2
        assert errors == []
        assert product["featured_image_url"].endswith(".webp")

    def test_no_featured_image(self, store, image_host):
        """Without a featured image the product is left untouched."""
        store.add("products", id="new-prod", user_id="target-user", title="Shoe")
        store.add("product_images", product_id="src-prod", url=image_host.add("a.png"), is_featured=False)

        cloned, _ = with_fetcher(
            image_host, lambda f: clone_product_images(store, f, "src-prod", "new-prod")
        )

        assert cloned == 1
        assert "featured_image_url" not in store.rows("products", id="new-prod")[0]
        assert ("update", "products") not in store.calls


class TestCopyProfileImage:
    """Tests for copy_profile_image function."""

    def test_success(self, store, image_host):
        """Should return the new public URL inside the given folder."""
        url = image_host.add("avatar.png")

        new_url = with_fetcher(
            image_host, lambda f: copy_profile_image(store, f, url, "user-1", "avatar_url", "avatars")
        )

        assert "/avatars/user-1-avatar_url-" in new_url
        assert new_url.endswith(".png")

    def test_failure_returns_none(self, store, image_host):
        """A failed download should leave the field unset."""
        url = image_host.add("cover.png")
        image_host.statuses[url] = 500

        new_url = with_fetcher(
            image_host, lambda f: copy_profile_image(store, f, url, "user-1", "cover_url_desktop", "covers")
        )

        assert new_url is None
        assert store.blobs == {}
