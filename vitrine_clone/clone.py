"""Clone categories, products and images from one seller account into another."""

import asyncio
import logging
from typing import Any, Callable

import httpx

from vitrine_clone.api.client import APIError
from vitrine_clone.errors import (
    CloneError,
    CloneTimeoutError,
    InvalidRequestError,
    NotFoundError,
    QuotaExceededError,
    StoreError,
    classify_error,
)
from vitrine_clone.images import duplicate_image
from vitrine_clone.models import (
    MERGE,
    REPLACE,
    CategoryResult,
    CloneCheck,
    CloneOptions,
    CloneProgress,
    CloneReport,
    ProductResult,
    ProgressCallback,
)
from vitrine_clone.output import CloneLogger

logger = logging.getLogger(__name__)

DEFAULT_LISTING_LIMIT = 50
DEFAULT_CLONE_TIMEOUT = 300.0

# Products are processed sequentially; batches only add a pause between groups
BATCH_SIZE = 5
BATCH_PAUSE = 0.5

ACCOUNT_COLUMNS = "id, name, email, listing_limit, role, is_blocked"

# Scalar product columns copied verbatim. id, user_id, created_at and
# featured_image_url are never copied.
PRODUCT_CLONE_FIELDS = (
    "title",
    "description",
    "short_description",
    "price",
    "discounted_price",
    "is_starting_price",
    "featured_offer_price",
    "featured_offer_installment",
    "featured_offer_description",
    "status",
    "category",
    "brand",
    "model",
    "gender",
    "condition",
    "video_url",
    "is_visible_on_storefront",
    "external_checkout_url",
    "colors",
    "sizes",
    "display_order",
)


def transform_product_for_creation(product: dict, target_user_id: str) -> dict:
    """Build the insert payload for a cloned product.

    Uses a whitelist of scalar columns; category membership stays a list of
    names, so it carries over without any id mapping.

    Args:
        product: Full product row from the source account
        target_user_id: Account that will own the copy

    Returns:
        Product payload suitable for inserting into the products table
    """
    transformed: dict[str, Any] = {"user_id": target_user_id}
    for key in PRODUCT_CLONE_FIELDS:
        if key in product:
            transformed[key] = product[key]
    return transformed


def listing_limit_of(account: dict) -> int:
    """Listing quota of an account, defaulting when unset."""
    return account.get("listing_limit") or DEFAULT_LISTING_LIMIT


def _check_ids(source_id: Any, target_id: Any) -> None:
    if not source_id or not target_id:
        raise InvalidRequestError("Missing required fields: sourceUserId, targetUserId")
    if not isinstance(source_id, str) or not isinstance(target_id, str):
        raise InvalidRequestError("sourceUserId and targetUserId must be strings")
    if source_id == target_id:
        raise InvalidRequestError("Source and target users cannot be the same")


async def validate_accounts(db: Any, source_id: str, target_id: str) -> tuple[dict, dict]:
    """Confirm both accounts exist and are distinct.

    Self-clones are rejected before anything is read.

    Returns:
        (source_account, target_account); target_account["listing_limit"]
        is always populated

    Raises:
        InvalidRequestError: missing ids or source == target
        NotFoundError: either account does not exist
    """
    _check_ids(source_id, target_id)

    source, target = await asyncio.gather(
        _get_account(db, source_id),
        _get_account(db, target_id),
    )
    if source is None:
        raise NotFoundError("Source user not found")
    if target is None:
        raise NotFoundError("Target user not found")

    target = {**target, "listing_limit": listing_limit_of(target)}
    logger.info(
        "Users validated: source=%s target=%s limit=%s",
        source.get("name"),
        target.get("name"),
        target["listing_limit"],
    )
    return source, target


async def _get_account(db: Any, user_id: str) -> dict | None:
    try:
        return await db.select_one("users", ACCOUNT_COLUMNS, {"id": user_id})
    except APIError as e:
        # A malformed uuid is rejected by the store with a 400
        if e.status_code == 400:
            return None
        raise


async def clone_categories(
    db: Any,
    source_id: str,
    target_id: str,
    merge_strategy: str = MERGE,
    operation_log: CloneLogger | None = None,
) -> CategoryResult:
    """Clone category names from source to target.

    Merge skips names the target already has (case-insensitive) and repeated
    names within the source. Replace deletes every target category first and
    inserts all source names as they are; if the insert then fails the target
    is left without categories.

    Returns:
        CategoryResult with the number of inserted rows and any error
    """
    result = CategoryResult()

    try:
        source_categories = await db.select("user_product_categories", "name", {"user_id": source_id})
    except APIError as e:
        result.errors.append(f"Failed to read source categories: {e.message}")
        return result

    if not source_categories:
        logger.info("No categories to clone")
        return result

    try:
        if merge_strategy == REPLACE:
            logger.info("Deleting existing categories (replace strategy)...")
            await db.delete("user_product_categories", {"user_id": target_id})
            names = [cat["name"] for cat in source_categories]
        else:
            existing = await db.select("user_product_categories", "name", {"user_id": target_id})
            seen = {cat["name"].lower() for cat in existing}
            names = []
            for cat in source_categories:
                key = cat["name"].lower()
                if key in seen:
                    continue
                seen.add(key)
                names.append(cat["name"])
    except APIError as e:
        result.errors.append(f"Failed to prepare target categories: {e.message}")
        return result

    if not names:
        logger.info("No new categories to clone (all already exist)")
        return result

    rows = [{"user_id": target_id, "name": name} for name in names]
    try:
        await db.insert("user_product_categories", rows)
    except APIError as e:
        error_msg = f"Failed to insert categories: {e.message}"
        result.errors.append(error_msg)
        if operation_log:
            operation_log.log_failure(
                entity_type="categories",
                source_id=source_id,
                error_message=e.message,
                error_type=classify_error(e.status_code, e.message),
                request_payload=rows,
            )
        return result

    result.cloned = len(rows)
    if operation_log:
        operation_log.log_success(
            entity_type="categories",
            source_id=source_id,
            new_id=target_id,
            identifier=", ".join(names[:10]),
            count=len(rows),
        )
    logger.info("Cloned %d categories", result.cloned)
    return result


async def clone_product_images(
    db: Any,
    fetcher: httpx.AsyncClient,
    source_product_id: str,
    target_product_id: str,
    operation_log: CloneLogger | None = None,
) -> tuple[int, list[str]]:
    """Duplicate every image of a source product onto its clone.

    Images are processed in read order. When several are flagged featured
    the last one processed becomes the product's featured_image_url.

    Returns:
        (images_cloned, errors)
    """
    errors: list[str] = []
    cloned = 0

    try:
        source_images = await db.select("product_images", "*", {"product_id": source_product_id})
    except APIError as e:
        return 0, [f"Failed to read images for product {source_product_id}: {e.message}"]

    featured_url = None
    for image in source_images:
        copied, error = await duplicate_image(db, fetcher, image, target_product_id)
        if error:
            errors.append(error)
            if operation_log:
                operation_log.log_failure(
                    entity_type="images",
                    source_id=image.get("id"),
                    error_message=error,
                    identifier=image.get("url"),
                )
            continue

        cloned += 1
        if copied["is_featured"]:
            featured_url = copied["url"]
        if operation_log:
            operation_log.log_success(
                entity_type="images",
                source_id=image.get("id"),
                new_id=copied["url"],
                identifier=image.get("url"),
            )

    if featured_url:
        try:
            await db.update("products", {"featured_image_url": featured_url}, {"id": target_product_id})
        except APIError as e:
            errors.append(f"Failed to set featured image for product {target_product_id}: {e.message}")

    return cloned, errors


async def _check_quota(
    db: Any,
    target_id: str,
    source_count: int,
    merge_strategy: str,
    listing_limit: int,
) -> None:
    if merge_strategy == REPLACE:
        # Existing target products are deleted first, so only the source counts
        if source_count > listing_limit:
            raise QuotaExceededError(0, source_count, listing_limit)
        return

    existing = await db.count("products", {"user_id": target_id})
    logger.info(
        "Listing limit check: existing=%d adding=%d limit=%d",
        existing,
        source_count,
        listing_limit,
    )
    if existing + source_count > listing_limit:
        raise QuotaExceededError(existing, source_count, listing_limit)


async def _delete_target_products(db: Any, target_id: str) -> None:
    existing = await db.select("products", "id", {"user_id": target_id})
    if not existing:
        return
    logger.info("Deleting %d existing products (replace strategy)...", len(existing))
    await db.delete("product_images", {"product_id": [p["id"] for p in existing]})
    await db.delete("products", {"user_id": target_id})


async def clone_products(
    db: Any,
    fetcher: httpx.AsyncClient,
    source_id: str,
    target_id: str,
    options: CloneOptions,
    listing_limit: int | None = None,
    on_progress: ProgressCallback | None = None,
    operation_log: CloneLogger | None = None,
    batch_size: int = BATCH_SIZE,
    batch_pause: float = BATCH_PAUSE,
    result: ProductResult | None = None,
    check_quota: bool = True,
) -> ProductResult:
    """Clone products (and optionally their images) from source to target.

    The quota check (unless disabled) runs before any product write. Each
    product is inserted independently; a failed insert is recorded and
    counted as skipped, and the loop moves on.

    Args:
        db: Row/blob store client
        fetcher: HTTP client used to download images
        source_id: Source account id
        target_id: Target account id
        options: Clone options (merge_strategy, copy_images, max_products)
        listing_limit: Target quota; read from the target account when None
        on_progress: Called after each product with a 0-100 percentage
        operation_log: Optional durable operation log
        batch_size: Products per batch
        batch_pause: Seconds to wait between batches
        result: Accumulator to fill in place (lets a caller see partial counts)
        check_quota: Compare the projected count with the listing limit first

    Returns:
        ProductResult with counts and per-item errors

    Raises:
        QuotaExceededError: projected count exceeds the listing limit
    """
    if result is None:
        result = ProductResult()

    try:
        source_products = await db.select(
            "products", "*", {"user_id": source_id}, limit=options.product_limit
        )
    except APIError as e:
        result.errors.append(f"Failed to read source products: {e.message}")
        return result

    if not source_products:
        logger.info("No products to clone")
        return result

    total = len(source_products)
    logger.info("Found %d products to clone", total)

    if check_quota:
        if listing_limit is None:
            target = await db.select_one("users", "listing_limit", {"id": target_id})
            listing_limit = listing_limit_of(target or {})
        await _check_quota(db, target_id, total, options.merge_strategy, listing_limit)

    if options.merge_strategy == REPLACE:
        if on_progress:
            on_progress(CloneProgress(0, total, "Removing existing products...", 0))
        try:
            await _delete_target_products(db, target_id)
        except APIError as e:
            result.errors.append(f"Failed to remove existing products: {e.message}")
            return result

    for index, product in enumerate(source_products):
        if index and index % batch_size == 0 and batch_pause:
            await asyncio.sleep(batch_pause)

        title = product.get("title") or product.get("id") or "untitled"
        await _clone_one_product(db, fetcher, product, title, target_id, options, result, operation_log)

        if on_progress:
            on_progress(
                CloneProgress(
                    current=index + 1,
                    total=total,
                    message=f"Cloning: {title[:30]}",
                    percentage=round((index + 1) / total * 100),
                )
            )

    return result


async def _clone_one_product(
    db: Any,
    fetcher: httpx.AsyncClient,
    product: dict,
    title: str,
    target_id: str,
    options: CloneOptions,
    result: ProductResult,
    operation_log: CloneLogger | None,
) -> None:
    payload = transform_product_for_creation(product, target_id)
    try:
        rows = await db.insert("products", payload)
    except APIError as e:
        result.errors.append(f'Failed to create product "{title}": {e.message}')
        result.skipped += 1
        if operation_log:
            operation_log.log_failure(
                entity_type="products",
                source_id=product.get("id"),
                error_message=e.message,
                error_type=classify_error(e.status_code, e.message),
                request_payload=payload,
                identifier=title,
            )
        return

    if not rows or not rows[0].get("id"):
        result.errors.append(f'Failed to create product "{title}": store returned no row')
        result.skipped += 1
        return

    new_product_id = rows[0]["id"]
    result.products_cloned += 1
    if operation_log:
        operation_log.log_success(
            entity_type="products",
            source_id=product.get("id"),
            new_id=new_product_id,
            identifier=title,
        )

    if options.copy_images and product.get("id"):
        cloned, errors = await clone_product_images(
            db, fetcher, product["id"], new_product_id, operation_log
        )
        result.images_cloned += cloned
        result.errors.extend(errors)


async def check_clone(db: Any, source_id: str, target_id: str, options: CloneOptions) -> CloneCheck:
    """Pre-flight statistics for a planned clone. Writes nothing."""
    _check_ids(source_id, target_id)

    source_categories, source_products, target_categories, target_products, target = await asyncio.gather(
        db.count("user_product_categories", {"user_id": source_id}),
        db.count("products", {"user_id": source_id}),
        db.count("user_product_categories", {"user_id": target_id}),
        db.count("products", {"user_id": target_id}),
        db.select_one("users", "listing_limit", {"id": target_id}),
    )
    limit = listing_limit_of(target or {})

    warnings = []
    if options.clone_products and options.merge_strategy == MERGE:
        total_after = target_products + min(source_products, options.product_limit)
        if total_after > limit:
            warnings.append(f"Listing limit will be exceeded: {total_after} > {limit}")
    if options.clone_products and options.merge_strategy == REPLACE:
        if min(source_products, options.product_limit) > limit:
            warnings.append(f"Listing limit will be exceeded: {source_products} > {limit}")
    if options.clone_categories and source_categories == 0:
        warnings.append("Source user has no categories")
    if options.clone_products and source_products == 0:
        warnings.append("Source user has no products")

    return CloneCheck(
        valid=not warnings,
        warnings=warnings,
        source_stats={"categories": source_categories, "products": source_products},
        target_stats={"categories": target_categories, "products": target_products, "limit": limit},
    )


class ProgressTracker:
    """Forwards progress to a callback, never letting the percentage go back."""

    TOTAL_STEPS = 10

    def __init__(self, callback: ProgressCallback | None):
        self.callback = callback
        self.percentage = 0.0

    def report(
        self,
        percentage: float,
        message: str,
        current: int | None = None,
        total: int | None = None,
    ) -> None:
        """Report overall progress.

        current/total default to coarse steps out of TOTAL_STEPS; sub-steps
        pass their own item counts through.
        """
        self.percentage = max(self.percentage, min(percentage, 100.0))
        if self.callback:
            if current is None or total is None:
                total = self.TOTAL_STEPS
                current = round(self.percentage / 100 * total)
            self.callback(CloneProgress(current, total, message, self.percentage))

    def scaled(self, start: float, end: float) -> Callable[[CloneProgress], None]:
        """Callback mapping a sub-step's 0-100 onto [start, end]."""

        def forward(progress: CloneProgress) -> None:
            self.report(
                start + progress.percentage / 100 * (end - start),
                progress.message,
                progress.current,
                progress.total,
            )

        return forward


async def _run_phases(
    db: Any,
    fetcher: httpx.AsyncClient,
    source_id: str,
    target_id: str,
    options: CloneOptions,
    report: CloneReport,
    progress: ProgressTracker,
    operation_log: CloneLogger | None,
    batch_pause: float,
) -> None:
    progress.report(10, "Validating users...")
    _, target = await validate_accounts(db, source_id, target_id)

    if options.clone_categories:
        progress.report(20, "Cloning categories...")
        categories = await clone_categories(db, source_id, target_id, options.merge_strategy, operation_log)
        report.categories_cloned = categories.cloned
        report.errors.extend(categories.errors)
        progress.report(30, f"{categories.cloned} categories cloned")

    if options.clone_products:
        progress.report(40, "Cloning products...")
        products = ProductResult()
        try:
            products = await clone_products(
                db,
                fetcher,
                source_id,
                target_id,
                options,
                listing_limit=target["listing_limit"],
                on_progress=progress.scaled(40, 90),
                operation_log=operation_log,
                batch_pause=batch_pause,
                result=products,
            )
        finally:
            # Keep partial counts even when the deadline interrupts the loop
            report.products_cloned = products.products_cloned
            report.images_cloned = products.images_cloned
            report.skipped = products.skipped
            report.errors.extend(products.errors)


async def run_clone(
    db: Any,
    fetcher: httpx.AsyncClient,
    source_id: str,
    target_id: str,
    options: CloneOptions,
    authorization: Any = None,
    on_progress: ProgressCallback | None = None,
    timeout: float | None = DEFAULT_CLONE_TIMEOUT,
    operation_log: CloneLogger | None = None,
    batch_pause: float = BATCH_PAUSE,
) -> CloneReport:
    """Run a clone: authorize, validate, clone categories, clone products.

    The same algorithm serves every entry point; only the injected
    authorization strategy differs. There is no transaction around the run:
    on a quota error, a timeout or any other abort, rows already written stay
    written, and the partial report travels on the raised error.

    Args:
        db: Row/blob store client
        fetcher: HTTP client used to download images
        source_id: Account to copy from
        target_id: Account to copy into
        options: What to clone and how
        authorization: Object with an async authorize(db); None skips the check
        on_progress: Receives CloneProgress updates (percentage never decreases)
        timeout: Wall-clock budget in seconds for the whole run (None = unbounded)
        operation_log: Optional durable operation log
        batch_pause: Seconds to pause between product batches

    Returns:
        CloneReport; success is True iff anything was cloned

    Raises:
        AuthorizationError, InvalidRequestError, NotFoundError,
        QuotaExceededError, CloneTimeoutError
    """
    report = CloneReport()
    progress = ProgressTracker(on_progress)
    status = "failed"

    try:
        if authorization is not None:
            await authorization.authorize(db)

        if not options.clone_categories and not options.clone_products:
            raise InvalidRequestError("At least one option must be selected (categories or products)")

        logger.info(
            "Starting clone %s -> %s with %s", str(source_id)[:8], str(target_id)[:8], options.to_dict()
        )
        try:
            await asyncio.wait_for(
                _run_phases(
                    db, fetcher, source_id, target_id, options,
                    report, progress, operation_log, batch_pause,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            status = "timeout"
            logger.error("Clone %s -> %s timed out after %ss", str(source_id)[:8], str(target_id)[:8], timeout)
            raise CloneTimeoutError(
                f"Clone operation timed out after {timeout:.0f} seconds; "
                "writes already issued were not rolled back",
                report,
            ) from e

        progress.report(100, "Done")
        status = "completed"
        logger.info("Clone completed: %s", report.to_dict())
        return report

    except CloneError as e:
        if e.report is None:
            e.report = report
        logger.error("Clone %s -> %s failed: %s", str(source_id)[:8], str(target_id)[:8], e.message)
        raise

    except APIError as e:
        logger.error("Store error during clone: %s", e)
        raise StoreError(f"Store error: {e.message}", report) from e

    finally:
        if operation_log:
            operation_log.complete(status, report.to_dict())
