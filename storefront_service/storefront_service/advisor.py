"""Low stock warnings for sellers. Read-only; never touches the ledger."""

from typing import Optional

from .exceptions import InvalidRequest, ListingNotFound, TransientFailure
from .logger import component_logger
from .schemas import LISTINGS, Listing, LowStockItem, LowStockReport, LowStockSummary, VariationWarning
from .store.base import DocumentStore, StoreError

logger = component_logger("advisor")

DEFAULT_THRESHOLD = 5


def evaluate_listing(listing: Listing, threshold: int) -> LowStockReport:
    """Build the low stock report for one listing snapshot.

    Zero stock is reported as out of stock; anything else at or below the
    threshold as low stock.
    """
    warnings: list[str] = []

    if listing.has_variations:
        variation_warnings: list[VariationWarning] = []
        for variation in listing.variations:
            if variation.quantity > threshold:
                continue
            variation_warnings.append(
                VariationWarning(id=variation.id, name=variation.name, quantity=variation.quantity)
            )
            if variation.quantity == 0:
                warnings.append(f'Variation "{variation.name}" is out of stock')
            else:
                warnings.append(
                    f'Variation "{variation.name}" has low stock: {variation.quantity} units remaining'
                )
        return LowStockReport(
            has_low_stock=bool(variation_warnings),
            warnings=warnings,
            total_stock=sum(v.quantity for v in listing.variations),
            variation_warnings=variation_warnings or None,
        )

    total = listing.quantity
    if total <= threshold:
        warnings.append("Item is out of stock" if total == 0 else f"Low stock: {total} units remaining")
    return LowStockReport(has_low_stock=bool(warnings), warnings=warnings, total_stock=total)


class LowStockAdvisor:
    """Low stock signals over snapshot reads of the listings collection."""

    def __init__(self, store: DocumentStore, default_threshold: int = DEFAULT_THRESHOLD):
        self._store = store
        self.default_threshold = default_threshold

    def check_low_stock(self, item_id: str, threshold: Optional[int] = None) -> LowStockReport:
        """Report low and zero stock for one listing.

        Raises:
            ListingNotFound: Unknown listing
        """
        threshold = self._threshold(threshold)
        try:
            doc = self._store.get_document(LISTINGS, item_id)
        except StoreError as exc:
            raise TransientFailure(f"Could not read listing {item_id}: {exc}") from exc
        if doc is None:
            raise ListingNotFound(item_id)
        return evaluate_listing(Listing.from_document(item_id, doc.data), threshold)

    def get_low_stock_summary(self, seller_id: str, threshold: Optional[int] = None) -> LowStockSummary:
        """Collect every listing of a seller that has low or zero stock."""
        threshold = self._threshold(threshold)
        try:
            docs = self._store.query(LISTINGS, filters=[("owner", "==", seller_id)], order_by="name")
        except StoreError as exc:
            raise TransientFailure(f"Could not scan listings of seller {seller_id}: {exc}") from exc

        items = []
        for doc in docs:
            listing = Listing.from_document(doc.id, doc.data)
            report = evaluate_listing(listing, threshold)
            if report.has_low_stock:
                items.append(
                    LowStockItem(
                        id=listing.id,
                        name=listing.name,
                        total_stock=report.total_stock,
                        warnings=report.warnings,
                        variation_warnings=report.variation_warnings,
                    )
                )

        logger.debug(f"Low stock summary for seller {seller_id}: {len(items)} of {len(docs)} listings")
        return LowStockSummary(low_stock_items=items, total_low_stock_items=len(items))

    def _threshold(self, threshold: Optional[int]) -> int:
        threshold = self.default_threshold if threshold is None else threshold
        if threshold < 0:
            raise InvalidRequest(f"Low stock threshold must not be negative, got {threshold}")
        return threshold
