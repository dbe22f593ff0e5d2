"""Stock ledger: atomic reduce/restore of listing and variation stock.

This is the only code that writes ``quantity`` or ``variations[*].quantity``
on a listing. Every mutation is a single store transaction that re-reads the
listing, so the check and the write can never interleave with another
request. For listings with variations the aggregate ``quantity`` is
recomputed from the variations in the same write.
"""

from typing import Optional

from .exceptions import (
    InsufficientStock,
    InvalidRequest,
    ListingNotFound,
    TransientFailure,
    VariationNotFound,
    VariationRequired,
)
from .logger import component_logger
from .schemas import LISTINGS, Listing, StockAvailability, StockMutation, Variation
from .store.base import DocumentStore, StoreError, Transaction, TransactionAborted

logger = component_logger("ledger")


def _locate_variation(listing: Listing, variation_id: Optional[str]) -> Optional[Variation]:
    """Return the addressed variation, or ``None`` for a simple listing.

    Raises:
        VariationNotFound: The listing has variations but not this one.
        VariationRequired: The listing has variations and none was given.
    """
    if not listing.has_variations:
        return None
    if not variation_id:
        raise VariationRequired(listing.id)
    variation = listing.find_variation(variation_id)
    if variation is None:
        raise VariationNotFound(listing.id, variation_id)
    return variation


class StockLedger:
    """Atomic stock operations over the ``listings`` collection.

    Args:
        store: Transactional document store holding the listings.
        max_attempts: Retry bound per operation (defaults to the store's).
    """

    def __init__(self, store: DocumentStore, max_attempts: Optional[int] = None):
        self._store = store
        self._max_attempts = max_attempts

    def reduce(self, item_id: str, quantity: int, variation_id: Optional[str] = None) -> StockMutation:
        """Take ``quantity`` units out of stock.

        Args:
            item_id: Listing id
            quantity: Units to take, must be positive
            variation_id: Variation to take them from, for listings with variations

        Returns:
            StockMutation: Stock before and after the committed write

        Raises:
            ListingNotFound, VariationNotFound: Unknown listing or variation
            InsufficientStock: Fewer than ``quantity`` units available at commit time
            TransientFailure: The write did not commit within the retry bound
        """
        if quantity <= 0:
            raise InvalidRequest(f"Quantity to reduce must be positive, got {quantity}")
        try:
            mutation = self._apply(item_id, -quantity, variation_id, action="reduce")
        except InsufficientStock as exc:
            logger.warning(f"Stock reduction rejected for {item_id}: {exc}")
            raise
        logger.info(
            f"Stock reduced | item_id={item_id} | variation_id={variation_id} | "
            f"{mutation.previous_quantity} -> {mutation.new_quantity} | listing_total={mutation.listing_quantity}"
        )
        return mutation

    def restore(self, item_id: str, quantity: int, variation_id: Optional[str] = None) -> StockMutation:
        """Give ``quantity`` units back to stock.

        No upper bound is enforced; callers restore at most once per reduction.

        Raises:
            ListingNotFound, VariationNotFound: The listing or variation no longer exists
            TransientFailure: The write did not commit within the retry bound
        """
        if quantity <= 0:
            raise InvalidRequest(f"Quantity to restore must be positive, got {quantity}")
        mutation = self._apply(item_id, quantity, variation_id, action="restore")
        logger.info(
            f"Stock restored | item_id={item_id} | variation_id={variation_id} | "
            f"{mutation.previous_quantity} -> {mutation.new_quantity} | listing_total={mutation.listing_quantity}"
        )
        return mutation

    def check_availability(
        self, item_id: str, quantity_needed: int, variation_id: Optional[str] = None
    ) -> StockAvailability:
        """Advisory, non-transactional stock check.

        Stock can change before the actual reduction, which validates again
        atomically; never use this as the only gate.
        """
        if quantity_needed <= 0:
            raise InvalidRequest(f"Quantity needed must be positive, got {quantity_needed}")
        try:
            doc = self._store.get_document(LISTINGS, item_id)
        except StoreError as exc:
            raise TransientFailure(f"Could not read listing {item_id}: {exc}") from exc
        if doc is None:
            raise ListingNotFound(item_id)
        listing = Listing.from_document(item_id, doc.data)
        variation = _locate_variation(listing, variation_id)
        current = variation.quantity if variation else listing.quantity
        return StockAvailability(available=current >= quantity_needed, current_stock=current)

    def _apply(self, item_id: str, delta: int, variation_id: Optional[str], action: str) -> StockMutation:
        def mutate(txn: Transaction) -> StockMutation:
            doc = txn.get(LISTINGS, item_id)
            if doc is None:
                raise ListingNotFound(item_id)
            listing = Listing.from_document(item_id, doc.data)
            variation = _locate_variation(listing, variation_id)

            if variation is not None:
                previous = variation.quantity
                if previous + delta < 0:
                    raise InsufficientStock(item_id, -delta, previous, variation_name=variation.name)
                variation.quantity = previous + delta
                total = sum(v.quantity for v in listing.variations)
                txn.update(
                    LISTINGS,
                    item_id,
                    {
                        "variations": [v.model_dump(mode="json") for v in listing.variations],
                        "quantity": total,
                    },
                )
                return StockMutation(
                    item_id=item_id,
                    variation_id=variation.id,
                    previous_quantity=previous,
                    new_quantity=variation.quantity,
                    listing_quantity=total,
                )

            previous = listing.quantity
            if previous + delta < 0:
                raise InsufficientStock(item_id, -delta, previous)
            txn.update(LISTINGS, item_id, {"quantity": previous + delta})
            return StockMutation(
                item_id=item_id,
                previous_quantity=previous,
                new_quantity=previous + delta,
                listing_quantity=previous + delta,
            )

        try:
            return self._store.run_transaction(mutate, max_attempts=self._max_attempts)
        except TransactionAborted as exc:
            logger.error(f"Stock {action} for {item_id} gave up after {exc.attempts} conflicting attempts")
            raise TransientFailure(f"Stock {action} for {item_id} did not commit: {exc}") from exc
        except StoreError as exc:
            logger.error(f"Stock {action} for {item_id} failed in the store: {exc}")
            raise TransientFailure(f"Stock {action} for {item_id} failed: {exc}") from exc
