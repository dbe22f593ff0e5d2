"""FastAPI server implementation for the Storefront Service."""

from concurrent.futures import Executor
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .advisor import LowStockAdvisor
from .config import Settings, load_settings
from .exceptions import (
    CompensationFailure,
    InsufficientStock,
    InvalidRequest,
    InvalidStatusTransition,
    NotFound,
    TransientFailure,
)
from .ledger import StockLedger
from .lifecycle import OrderLifecycle
from .logger import logger
from .notifier import NotificationGateway, build_notifier
from .schemas import (
    LISTINGS,
    CloseRequest,
    LowStockReport,
    LowStockSummary,
    Order,
    OrderClosure,
    OrderDraft,
    PaymentStatusUpdate,
    StatusUpdateRequest,
    StockAvailability,
)
from .store import DocumentStore, StoreError, build_store


class ServiceState:
    """Holds the store, the ledger and the services built on top of it."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.store: Optional[DocumentStore] = None
        self.notifier: Optional[NotificationGateway] = None
        self.ledger: Optional[StockLedger] = None
        self.advisor: Optional[LowStockAdvisor] = None
        self.lifecycle: Optional[OrderLifecycle] = None

    @property
    def configured(self) -> bool:
        return self.lifecycle is not None

    def configure(
        self,
        settings: Settings,
        store: Optional[DocumentStore] = None,
        notifier: Optional[NotificationGateway] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        """Wire the services from settings.

        Args:
            settings: Validated service settings
            store: Store to use instead of the configured backend
            notifier: Notification gateway to use instead of the configured one
            executor: Executor for notifications (a thread pool by default)
        """
        self.settings = settings
        self.store = store or build_store(
            settings.store_backend,
            settings.database_url,
            max_attempts=settings.transaction_max_attempts,
            retry_backoff=settings.transaction_retry_backoff,
        )
        self.notifier = notifier or build_notifier(
            settings.notifier_backend, settings.kafka_bootstrap_servers, topic=settings.order_events_topic
        )
        self.ledger = StockLedger(self.store)
        self.advisor = LowStockAdvisor(self.store, default_threshold=settings.low_stock_threshold)
        self.lifecycle = OrderLifecycle(self.store, self.ledger, self.notifier, executor=executor)
        logger.info(
            f"Services configured | store={settings.store_backend} | notifier={settings.notifier_backend} | "
            f"max_attempts={settings.transaction_max_attempts}"
        )

    def close(self) -> None:
        """Drain pending notifications and release the store."""
        if self.lifecycle:
            self.lifecycle.close()
        close_notifier = getattr(self.notifier, "close", None)
        if close_notifier:
            close_notifier()
        if self.store:
            self.store.close()
        self.store = self.notifier = self.ledger = self.advisor = self.lifecycle = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    # Startup
    if not state.configured:
        state.configure(load_settings())

    yield

    # Shutdown
    logger.info("Shutting down storefront service...")
    state.close()
    logger.info("Shutdown complete")


app = FastAPI(title="Storefront Service", lifespan=lifespan)
state = ServiceState()


def _error(status: HTTPStatus, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(HTTPStatus.NOT_FOUND, exc)


@app.exception_handler(InsufficientStock)
async def insufficient_stock_handler(request: Request, exc: InsufficientStock):
    return JSONResponse(
        status_code=HTTPStatus.CONFLICT,
        content={"detail": str(exc), "available": exc.available, "requested": exc.requested},
    )


@app.exception_handler(InvalidStatusTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStatusTransition):
    return _error(HTTPStatus.CONFLICT, exc)


@app.exception_handler(InvalidRequest)
async def invalid_request_handler(request: Request, exc: InvalidRequest):
    return _error(HTTPStatus.UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(TransientFailure)
async def transient_failure_handler(request: Request, exc: TransientFailure):
    logger.warning(f"{request.method} {request.url.path} failed transiently: {exc}")
    return _error(HTTPStatus.SERVICE_UNAVAILABLE, exc)


@app.exception_handler(CompensationFailure)
async def compensation_failure_handler(request: Request, exc: CompensationFailure):
    return _error(HTTPStatus.INTERNAL_SERVER_ERROR, exc)


def _services() -> ServiceState:
    if not state.configured:
        raise HTTPException(status_code=503, detail="Service unavailable")
    return state


@app.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
def readiness_check():
    """Readiness check that verifies the document store answers reads."""
    if not state.configured:
        return {"status": "not ready", "store": "unconfigured"}
    try:
        state.store.get_document(LISTINGS, "__readiness__")
    except StoreError as e:
        logger.error(f"Store connection failed: {e}")
        return {"status": "not ready", "store": "disconnected"}
    return {"status": "ready", "store": "connected"}


@app.post("/orders", status_code=HTTPStatus.CREATED)
def create_order(draft: OrderDraft):
    """Reserve stock and record a new order.

    Args:
        draft (OrderDraft): The buyer's purchase request.

    Returns:
        dict: Status of the order creation and the order ID.
    """
    order_id = _services().lifecycle.create_order(draft)
    return {"status": "success", "order_id": order_id}


@app.get("/orders/{order_id}", response_model=Order)
def get_order(order_id: str):
    """Get an order by ID."""
    return _services().lifecycle.get_order(order_id)


@app.post("/orders/{order_id}/cancel", response_model=OrderClosure)
def cancel_order(order_id: str, body: Optional[CloseRequest] = None):
    """Cancel an order and give its stock back.

    Cancelling an order that is already closed succeeds with
    ``already_closed`` set.
    """
    reason = body.reason if body else None
    return _services().lifecycle.cancel_order(order_id, reason)


@app.post("/orders/{order_id}/refund", response_model=OrderClosure)
def refund_order(order_id: str, body: Optional[CloseRequest] = None):
    """Refund an order and give its stock back."""
    reason = body.reason if body else None
    return _services().lifecycle.refund_order(order_id, reason)


@app.patch("/orders/{order_id}/status", response_model=Order)
def update_order_status(order_id: str, update: StatusUpdateRequest):
    """Move an order to a new status.

    Raises:
        HTTPException: 409 when the order is already cancelled or refunded
    """
    return _services().lifecycle.update_order_status(order_id, update.status, update.reason)


@app.post("/payments/status", response_model=Order)
def update_payment_status(update: PaymentStatusUpdate):
    """Payment gateway callback."""
    return _services().lifecycle.update_order_payment_status(update.payment_reference, update.payment_status)


@app.get("/listings/{item_id}/availability", response_model=StockAvailability)
def check_availability(item_id: str, quantity: int = Query(1), variation_id: Optional[str] = None):
    """Advisory stock check; the reduction at order time checks again."""
    return _services().ledger.check_availability(item_id, quantity, variation_id)


@app.get("/listings/{item_id}/low-stock", response_model=LowStockReport)
def check_low_stock(item_id: str, threshold: Optional[int] = None):
    """Low stock report for one listing."""
    return _services().advisor.check_low_stock(item_id, threshold)


@app.get("/sellers/{seller_id}/low-stock", response_model=LowStockSummary)
def get_low_stock_summary(seller_id: str, threshold: Optional[int] = None):
    """Every listing of a seller with low or zero stock."""
    return _services().advisor.get_low_stock_summary(seller_id, threshold)
