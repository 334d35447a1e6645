"""Options, progress and report structures for clone operations."""

from dataclasses import dataclass, field
from typing import Any, Callable

from vitrine_clone.errors import InvalidRequestError

MERGE = "merge"
REPLACE = "replace"
MERGE_STRATEGIES = (MERGE, REPLACE)

# Upper bound on products read from the source when no maxProducts is given
DEFAULT_MAX_PRODUCTS = 1000


@dataclass
class CloneOptions:
    """What to clone and how to treat data already in the target."""

    clone_categories: bool = True
    clone_products: bool = True
    merge_strategy: str = MERGE
    copy_images: bool = True
    max_products: int | None = None

    def __post_init__(self) -> None:
        if self.merge_strategy not in MERGE_STRATEGIES:
            raise InvalidRequestError(
                f"Invalid mergeStrategy: {self.merge_strategy!r} (expected 'merge' or 'replace')"
            )
        if self.max_products is not None and (
            isinstance(self.max_products, bool) or not isinstance(self.max_products, int) or self.max_products < 1
        ):
            raise InvalidRequestError("maxProducts must be a positive integer")

    @property
    def product_limit(self) -> int:
        return self.max_products or DEFAULT_MAX_PRODUCTS

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CloneOptions":
        """Build options from a camelCase request payload."""
        data = data or {}
        if not isinstance(data, dict):
            raise InvalidRequestError("options must be an object")
        return cls(
            clone_categories=bool(data.get("cloneCategories", True)),
            clone_products=bool(data.get("cloneProducts", True)),
            merge_strategy=data.get("mergeStrategy", MERGE),
            copy_images=bool(data.get("copyImages", True)),
            max_products=data.get("maxProducts"),
        )

    @classmethod
    def quick(cls) -> "CloneOptions":
        """Categories and products, merged, without images."""
        return cls(clone_categories=True, clone_products=True, merge_strategy=MERGE, copy_images=False)

    @classmethod
    def full(cls) -> "CloneOptions":
        """Categories and products, merged, with images."""
        return cls(clone_categories=True, clone_products=True, merge_strategy=MERGE, copy_images=True)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "cloneCategories": self.clone_categories,
            "cloneProducts": self.clone_products,
            "mergeStrategy": self.merge_strategy,
            "copyImages": self.copy_images,
        }
        if self.max_products is not None:
            data["maxProducts"] = self.max_products
        return data


@dataclass(frozen=True)
class CloneProgress:
    current: int
    total: int
    message: str
    percentage: float


ProgressCallback = Callable[[CloneProgress], None]


@dataclass
class CloneReport:
    """Aggregated, ephemeral result of one clone run.

    Errors are informational: a run that cloned anything is a success even
    when some items failed.
    """

    categories_cloned: int = 0
    products_cloned: int = 0
    images_cloned: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.categories_cloned > 0 or self.products_cloned > 0

    @property
    def total_processed(self) -> int:
        return self.categories_cloned + self.products_cloned

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "categoriesCloned": self.categories_cloned,
            "productsCloned": self.products_cloned,
            "imagesCloned": self.images_cloned,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "totalProcessed": self.total_processed,
        }


@dataclass
class CategoryResult:
    cloned: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ProductResult:
    products_cloned: int = 0
    images_cloned: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class CloneCheck:
    """Pre-flight statistics and warnings for a planned clone."""

    valid: bool
    warnings: list[str]
    source_stats: dict[str, int]
    target_stats: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "warnings": list(self.warnings),
            "sourceStats": dict(self.source_stats),
            "targetStats": dict(self.target_stats),
        }
