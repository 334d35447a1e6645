"""Provision a new seller account as a copy of a template account."""

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from vitrine_clone.api.client import APIError
from vitrine_clone.clone import clone_categories, clone_products
from vitrine_clone.errors import CloneError, InvalidRequestError, NotFoundError, StoreError
from vitrine_clone.images import copy_profile_image
from vitrine_clone.models import MERGE, CloneOptions, CloneReport

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SLUG_RE = re.compile(r"^[a-z0-9-_]+$", re.IGNORECASE)
MIN_PASSWORD_LENGTH = 6

# Profile columns carried over from the template
PROFILE_FIELDS = (
    "role",
    "phone",
    "bio",
    "whatsapp",
    "instagram",
    "location_url",
    "niche_type",
    "currency",
    "language",
    "theme",
    "listing_limit",
)

# (column, storage folder)
PROFILE_IMAGES = (
    ("avatar_url", "avatars"),
    ("cover_url_desktop", "covers"),
    ("cover_url_mobile", "covers"),
    ("promotional_banner_url_desktop", "promotional-banners"),
    ("promotional_banner_url_mobile", "promotional-banners"),
)


@dataclass
class NewAccountData:
    email: str
    password: str
    name: str
    slug: str

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NewAccountData":
        data = data or {}
        missing = [key for key in ("email", "password", "name", "slug") if not data.get(key)]
        if missing:
            raise InvalidRequestError(f"Missing required fields: {', '.join(missing)}")
        return cls(
            email=str(data["email"]).strip(),
            password=str(data["password"]),
            name=str(data["name"]).strip(),
            slug=str(data["slug"]).strip(),
        )

    def validate(self) -> None:
        if not EMAIL_RE.match(self.email):
            raise InvalidRequestError("Invalid email format")
        if len(self.password) < MIN_PASSWORD_LENGTH:
            raise InvalidRequestError("Password must be at least 6 characters long")
        if not SLUG_RE.match(self.slug):
            raise InvalidRequestError("Slug can only contain letters, numbers, hyphens, and underscores")


@dataclass
class AccountCloneResult:
    new_user_id: str
    report: CloneReport

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "newUserId": self.new_user_id,
            "stats": self.report.to_dict(),
        }


async def _ensure_unique(db: Any, new_account: NewAccountData) -> None:
    if await db.select_one("users", "id", {"email": new_account.email}):
        raise InvalidRequestError("Email already exists")
    if await db.select_one("users", "id", {"slug": new_account.slug}):
        raise InvalidRequestError("Slug already exists")


async def _copy_profile(db: Any, fetcher: httpx.AsyncClient, template: dict, new_id: str, new_account: NewAccountData) -> None:
    profile = {field: template.get(field) for field in PROFILE_FIELDS}
    profile.update(
        id=new_id,
        email=new_account.email,
        name=new_account.name,
        slug=new_account.slug,
        is_blocked=False,
        plan_status="inactive",
        created_by=None,
    )
    await db.upsert("users", profile)

    image_updates = {}
    for field_name, folder in PROFILE_IMAGES:
        source_url = template.get(field_name)
        if not source_url:
            continue
        new_url = await copy_profile_image(db, fetcher, source_url, new_id, field_name, folder)
        if new_url:
            image_updates[field_name] = new_url

    if image_updates:
        await db.update("users", image_updates, {"id": new_id})


async def _copy_settings_rows(db: Any, template_id: str, new_id: str) -> None:
    settings = await db.select_one("user_storefront_settings", "settings", {"user_id": template_id})
    if settings:
        await db.insert("user_storefront_settings", {"user_id": new_id, "settings": settings["settings"]})

    colors = await db.select("user_colors", "name, hex_value", {"user_id": template_id})
    if colors:
        await db.insert(
            "user_colors",
            [{"user_id": new_id, "name": c["name"], "hex_value": c["hex_value"]} for c in colors],
        )

    sizes = await db.select("user_custom_sizes", "size_name, size_type", {"user_id": template_id})
    if sizes:
        await db.insert(
            "user_custom_sizes",
            [{"user_id": new_id, "size_name": s["size_name"], "size_type": s["size_type"]} for s in sizes],
        )

    tracking = await db.select_one(
        "tracking_settings",
        "meta_pixel_id, meta_events, ga_measurement_id, ga_events",
        {"user_id": template_id, "is_active": True},
    )
    if tracking:
        await db.insert("tracking_settings", {**tracking, "user_id": new_id, "is_active": True})


async def clone_account(
    db: Any,
    fetcher: httpx.AsyncClient,
    template_user_id: str,
    new_account: NewAccountData,
    batch_pause: float = 0.5,
) -> AccountCloneResult:
    """Create a new account and copy everything from a template account into it.

    Steps: create credentials, copy profile fields and profile images, copy
    storefront settings, custom colors/sizes and the active tracking row,
    then clone categories and products with images. The new account receives
    every template product regardless of listing limits. If anything fails after
    the credentials exist, the credentialed account is deleted again (best
    effort; a failed cleanup is only logged).

    Raises:
        InvalidRequestError: bad input, or email/slug already taken
        NotFoundError: template account does not exist
        StoreError: provisioning or copying failed (account cleaned up)
    """
    if not template_user_id:
        raise InvalidRequestError("Missing required field: originalUserId")
    new_account.validate()

    template = await db.select_one("users", "*", {"id": template_user_id})
    if not template:
        raise NotFoundError("Original user not found")

    await _ensure_unique(db, new_account)

    logger.info("Creating new user account for %s...", new_account.email)
    try:
        new_id = await db.create_auth_user(
            new_account.email,
            new_account.password,
            {"name": new_account.name, "role": template.get("role"), "niche_type": template.get("niche_type")},
        )
    except APIError as e:
        logger.error("Error creating user account: %s", e.message)
        raise StoreError("Failed to create user account") from e

    logger.info("New user created with ID: %s", new_id)

    try:
        await _copy_profile(db, fetcher, template, new_id, new_account)
        await _copy_settings_rows(db, template_user_id, new_id)

        report = CloneReport()
        categories = await clone_categories(db, template_user_id, new_id, MERGE)
        report.categories_cloned = categories.cloned
        report.errors.extend(categories.errors)

        options = CloneOptions(clone_categories=True, clone_products=True, merge_strategy=MERGE, copy_images=True)
        products = await clone_products(
            db,
            fetcher,
            template_user_id,
            new_id,
            options,
            batch_pause=batch_pause,
            check_quota=False,
        )
        report.products_cloned = products.products_cloned
        report.images_cloned = products.images_cloned
        report.skipped = products.skipped
        report.errors.extend(products.errors)

    except (APIError, CloneError) as e:
        message = e.message
        logger.error("Error during user cloning: %s", message)
        try:
            await db.delete_auth_user(new_id)
            logger.info("Cleaned up partially created user %s", new_id)
        except APIError as cleanup_error:
            logger.error("Error during cleanup of %s: %s", new_id, cleanup_error.message)
        raise StoreError(f"Failed to clone user: {message}") from e

    logger.info("User cloning completed: %s", report.to_dict())
    return AccountCloneResult(new_user_id=new_id, report=report)
