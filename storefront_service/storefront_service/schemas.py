"""Pydantic models for listings, orders and stock reports."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LISTINGS = "listings"
ORDERS = "orders"


class OrderStatus(str, Enum):
    """Order statuses; CANCELLED and REFUNDED are terminal."""

    PENDING = "PENDING"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    RECEIVED = "RECEIVED"
    REFUND_REQUESTED = "REFUND_REQUESTED"


TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


class PaymentMethod(str, Enum):
    """Payment methods offered at checkout."""

    CASH_ON_DELIVERY = "cod"
    PAY_NOW = "paynow"
    CARD = "card"
    BANK_TRANSFER = "bankTransfer"
    DIGITAL_WALLET = "digitalWallet"


# Everything except cash on delivery is settled after the order is placed.
DEFERRED_PAYMENT_METHODS = frozenset(set(PaymentMethod) - {PaymentMethod.CASH_ON_DELIVERY})


class PaymentStatus(str, Enum):
    """Payment statuses reported by the payment gateway."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class OrderEvent(str, Enum):
    """Events handed to the notification gateway."""

    CREATED = "order.created"
    STATUS_CHANGED = "order.status_changed"
    PAYMENT_COMPLETED = "order.payment_completed"


def utcnow() -> datetime:
    """Timezone-aware current time, used for every server-assigned timestamp."""
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    """Generate an order identifier."""
    return f"ord-{uuid.uuid4().hex[:16]}"


class Variation(BaseModel):
    """A named sub-SKU of a listing with its own stock count.

    Attributes:
        id: Variation identifier, unique within the listing.
        name: Display name (e.g. "Large / Red").
        price_change: Price delta relative to the listing price.
        quantity: Available units, never negative.
    """

    id: str
    name: str = ""
    price_change: float = 0
    quantity: int = Field(0, ge=0)

    model_config = ConfigDict(extra="allow")


class Listing(BaseModel):
    """A sellable product as stored in the ``listings`` collection.

    Attributes:
        id: Listing identifier (document id).
        owner: Seller who owns the listing.
        name: Display name.
        quantity: Available units; the sum of variation quantities when
            the listing has variations.
        has_variations: Whether stock is tracked per variation.
        variations: Variations, only meaningful when ``has_variations`` is set.
    """

    id: str
    owner: Optional[str] = None
    name: str = "Unknown Item"
    quantity: int = Field(0, ge=0)
    has_variations: bool = False
    variations: list[Variation] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    @field_validator("quantity", mode="before")
    @classmethod
    def missing_quantity_is_zero(cls, v):
        return 0 if v is None else v

    @field_validator("name", mode="before")
    @classmethod
    def missing_name_is_unknown(cls, v):
        return v or "Unknown Item"

    @field_validator("variations", mode="before")
    @classmethod
    def missing_variations_are_empty(cls, v):
        return v or []

    @model_validator(mode="after")
    def derive_quantity(self):
        """Keep the aggregate quantity equal to the sum of the variations."""
        if self.has_variations:
            self.quantity = sum(v.quantity for v in self.variations)
        return self

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Listing":
        """Build a listing from a raw stored document."""
        return cls(id=doc_id, **{k: v for k, v in data.items() if k != "id"})

    def to_document(self) -> dict:
        """Serialize to the stored document shape (without the id)."""
        return self.model_dump(mode="json", exclude={"id"})

    def find_variation(self, variation_id: str) -> Optional[Variation]:
        """Return the variation with the given id, if any."""
        return next((v for v in self.variations if v.id == variation_id), None)


class OrderDraft(BaseModel):
    """A buyer's purchase request, before stock is reserved.

    Attributes:
        item_id: Listing being bought; custom orders may carry none.
        variation_id: Selected variation, for listings with variations.
        quantity: Units to buy.
        payment_method: Checkout payment method.
        payment_reference: External payment-gateway reference; defaults to the order id.
    """

    item_id: Optional[str] = None
    variation_id: Optional[str] = None
    quantity: int = Field(1, gt=0, le=10000)
    item_name: str = ""
    buyer_id: Optional[str] = None
    buyer_email: Optional[str] = None
    seller_id: Optional[str] = None
    seller_shop_id: Optional[str] = None
    seller_shop_name: Optional[str] = None
    price: float = Field(0, ge=0)
    shipping: float = Field(0, ge=0)
    total: float = Field(0, ge=0)
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    payment_reference: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "item_id": "lst-001",
                "variation_id": "var-large",
                "quantity": 2,
                "item_name": "Handwoven basket",
                "buyer_id": "buyer-123",
                "seller_id": "seller-456",
                "price": 2500.0,
                "shipping": 350.0,
                "total": 5350.0,
                "payment_method": "bankTransfer",
            }
        }
    )


class Order(OrderDraft):
    """A persisted order as stored in the ``orders`` collection.

    ``stock_reserved`` records whether stock was reduced for the order
    (``None`` on records that predate the flag); ``stock_restored`` stays
    ``None`` until a restoration was attempted.
    """

    id: str = Field(default_factory=new_order_id)
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    stock_reserved: Optional[bool] = None
    stock_restored: Optional[bool] = None
    stock_restore_error: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def holds_stock(self) -> bool:
        """Whether closing this order must give stock back."""
        if self.stock_reserved is not None:
            return self.stock_reserved
        return bool(self.item_id and self.quantity)

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Order":
        """Build an order from a raw stored document."""
        return cls(id=doc_id, **{k: v for k, v in data.items() if k != "id"})

    def to_document(self) -> dict:
        """Serialize to the stored, JSON-safe document shape (without the id)."""
        return self.model_dump(mode="json", exclude={"id"})


class StockMutation(BaseModel):
    """Outcome of a committed reduce or restore.

    ``previous_quantity``/``new_quantity`` refer to the variation when one was
    addressed, to the listing otherwise; ``listing_quantity`` is always the
    listing aggregate after the write.
    """

    item_id: str
    variation_id: Optional[str] = None
    previous_quantity: int
    new_quantity: int
    listing_quantity: int


class StockAvailability(BaseModel):
    """Advisory availability check result."""

    available: bool
    current_stock: int


class VariationWarning(BaseModel):
    """A variation at or below the low stock threshold."""

    id: str
    name: str
    quantity: int


class LowStockReport(BaseModel):
    """Low stock signal for a single listing."""

    has_low_stock: bool
    warnings: list[str] = Field(default_factory=list)
    total_stock: int
    variation_warnings: Optional[list[VariationWarning]] = None


class LowStockItem(BaseModel):
    """A listing that appears in a seller's low stock summary."""

    id: str
    name: str
    total_stock: int
    warnings: list[str]
    variation_warnings: Optional[list[VariationWarning]] = None


class LowStockSummary(BaseModel):
    """Low stock listings of one seller."""

    low_stock_items: list[LowStockItem] = Field(default_factory=list)
    total_low_stock_items: int = 0


class OrderClosure(BaseModel):
    """Outcome of a cancellation or refund.

    Attributes:
        order_id: The order that was closed.
        status: Terminal status the order is in.
        already_closed: The order was already terminal; nothing was changed.
        stock_restored: Whether reserved stock was given back (``None`` when
            the order never reserved stock or was already closed).
    """

    order_id: str
    status: OrderStatus
    already_closed: bool = False
    stock_restored: Optional[bool] = None


class CloseRequest(BaseModel):
    """Body of a cancel or refund request."""

    reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    """Body of an order status change."""

    status: OrderStatus
    reason: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    """Payment gateway callback payload."""

    payment_reference: str
    payment_status: PaymentStatus
