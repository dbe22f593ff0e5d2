"""Typed errors raised by the stock ledger and the order lifecycle.

The HTTP layer translates these into status codes; everything else lets them
propagate to the immediate caller.
"""

from typing import Optional


class StorefrontError(Exception):
    """Base class for all storefront service errors."""


class NotFound(StorefrontError):
    """A referenced listing, variation or order does not exist."""

    kind = "Document"

    def __init__(self, identifier: str, message: Optional[str] = None):
        self.identifier = identifier
        super().__init__(message or f"{self.kind} not found: {identifier}")


class ListingNotFound(NotFound):
    kind = "Listing"


class VariationNotFound(NotFound):
    kind = "Variation"

    def __init__(self, item_id: str, variation_id: str):
        self.item_id = item_id
        super().__init__(variation_id, f"Variation not found: {variation_id} (listing {item_id})")


class OrderNotFound(NotFound):
    kind = "Order"


class InsufficientStock(StorefrontError):
    """The requested quantity exceeds the stock available at commit time."""

    def __init__(self, item_id: str, requested: int, available: int, variation_name: Optional[str] = None):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        self.variation_name = variation_name
        if variation_name:
            message = (
                f'Insufficient stock for variation "{variation_name}". '
                f"Available: {available}, Requested: {requested}"
            )
        else:
            message = f"Insufficient stock. Available: {available}, Requested: {requested}"
        super().__init__(message)


class TransientFailure(StorefrontError):
    """The store could not commit within the retry bound, or was unreachable.

    Safe to retry the whole operation.
    """


class CompensationFailure(StorefrontError):
    """Stock was reduced, the order was not persisted and the restore failed.

    Leaves a real stock/order mismatch that needs manual reconciliation.
    """

    def __init__(
        self,
        item_id: str,
        quantity: int,
        variation_id: Optional[str] = None,
        persistence_error: Optional[BaseException] = None,
    ):
        self.item_id = item_id
        self.quantity = quantity
        self.variation_id = variation_id
        self.persistence_error = persistence_error
        target = f"{item_id}/{variation_id}" if variation_id else item_id
        super().__init__(
            f"Stock for {target} was reduced by {quantity} but no order was recorded and the restore failed"
        )


class InvalidStatusTransition(StorefrontError):
    """An order status change that would reopen a closed order."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(f"Order {order_id} cannot move from {current} to {requested}")


class InvalidRequest(StorefrontError, ValueError):
    """A caller passed an argument no operation can accept (non-positive quantity, negative threshold)."""


class VariationRequired(InvalidRequest):
    """A listing with variations was addressed without a variation id."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Listing {item_id} has variations; a variation id is required")
