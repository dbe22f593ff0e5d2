"""Order lifecycle: keeps order records and listing stock from diverging.

Creation reduces stock before the order is written and gives it back if the
write fails. Cancellation and refund first claim the terminal status inside
a transaction, so only one caller can ever restore the stock of an order,
and then restore it. Notifications go out on a worker thread after the
fact and never influence stock.
"""

from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from typing import Optional, TypeVar

from .exceptions import (
    CompensationFailure,
    InvalidStatusTransition,
    OrderNotFound,
    TransientFailure,
)
from .ledger import StockLedger
from .logger import component_logger
from .notifier import LoggingNotifier, NotificationGateway
from .schemas import (
    DEFERRED_PAYMENT_METHODS,
    ORDERS,
    Order,
    OrderClosure,
    OrderDraft,
    OrderEvent,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)
from .store.base import DocumentStore, StoreError, Transaction

logger = component_logger("lifecycle")

T = TypeVar("T")


class OrderLifecycle:
    """Creates, closes and transitions orders in step with the stock ledger.

    Args:
        store: Document store holding the ``orders`` collection.
        ledger: Stock ledger over the same store.
        notifier: Gateway told about finalized orders (logs only by default).
        executor: Runs notifications off the request path; a small thread
            pool is created when omitted. The lifecycle shuts it down in ``close``.
        max_attempts: Retry bound for order transactions (defaults to the store's).
    """

    def __init__(
        self,
        store: DocumentStore,
        ledger: StockLedger,
        notifier: Optional[NotificationGateway] = None,
        executor: Optional[Executor] = None,
        max_attempts: Optional[int] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._notifier = notifier or LoggingNotifier()
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="order-notify")
        self._max_attempts = max_attempts

    def create_order(self, draft: OrderDraft) -> str:
        """Reserve stock and record the order.

        Args:
            draft: The buyer's purchase request

        Returns:
            str: Id of the persisted order

        Raises:
            InsufficientStock, NotFound, TransientFailure: Stock could not be
                reserved; nothing was written
            TransientFailure: The order could not be written; reserved stock
                was given back
            CompensationFailure: The order could not be written and giving
                the stock back failed too
        """
        reserves_stock = bool(draft.item_id and draft.quantity)
        variation_id = None
        if reserves_stock:
            mutation = self._ledger.reduce(draft.item_id, draft.quantity, draft.variation_id)
            # Only a variation the ledger actually reduced is recorded on the order.
            variation_id = mutation.variation_id

        status = OrderStatus.PENDING_PAYMENT if draft.payment_method == PaymentMethod.BANK_TRANSFER else OrderStatus.PENDING
        order = Order(
            **draft.model_dump(exclude={"variation_id"}),
            variation_id=variation_id,
            status=status,
            stock_reserved=reserves_stock,
        )
        if order.payment_reference is None:
            order.payment_reference = order.id

        try:
            self._store.run_transaction(
                lambda txn: txn.create(ORDERS, order.id, order.to_document()),
                max_attempts=self._max_attempts,
            )
        except Exception as exc:
            if reserves_stock:
                self._compensate(order, exc)
            if isinstance(exc, StoreError):
                raise TransientFailure(f"Order for {order.item_id} could not be recorded: {exc}") from exc
            raise

        logger.info(
            f"Order created | order_id={order.id} | item_id={order.item_id} | variation_id={order.variation_id} | "
            f"quantity={order.quantity} | status={order.status.value} | payment_method={order.payment_method.value}"
        )
        self._dispatch(order, OrderEvent.CREATED)
        return order.id

    def _compensate(self, order: Order, persistence_error: Exception) -> None:
        """Give back the stock of an order that was never recorded."""
        try:
            self._ledger.restore(order.item_id, order.quantity, order.variation_id)
        except Exception as restore_error:
            logger.critical(
                f"Stock/order mismatch, manual reconciliation required | item_id={order.item_id} | "
                f"variation_id={order.variation_id} | quantity={order.quantity} | "
                f"persistence_error={persistence_error!r} | restore_error={restore_error!r}"
            )
            raise CompensationFailure(
                order.item_id, order.quantity, order.variation_id, persistence_error=persistence_error
            ) from restore_error
        logger.warning(
            f"Order for {order.item_id} was not recorded; restored {order.quantity} units: {persistence_error!r}"
        )

    def cancel_order(self, order_id: str, reason: Optional[str] = None) -> OrderClosure:
        """Cancel an order and give its stock back, exactly once.

        Cancelling an order that is already cancelled or refunded succeeds
        without touching stock. A failed restoration is logged and recorded
        on the order; the cancellation stands.

        Raises:
            OrderNotFound: Unknown order
            TransientFailure: The cancellation could not be recorded
        """
        return self._close(order_id, OrderStatus.CANCELLED, reason)

    def refund_order(self, order_id: str, reason: Optional[str] = None) -> OrderClosure:
        """Refund an order and give its stock back, exactly once."""
        return self._close(order_id, OrderStatus.REFUNDED, reason)

    def _close(self, order_id: str, status: OrderStatus, reason: Optional[str]) -> OrderClosure:
        def claim(txn: Transaction) -> tuple[Order, bool]:
            order = self._load(txn, order_id)
            if order.is_terminal:
                return order, False
            now = utcnow()
            fields = {"status": status, "cancellation_reason": reason, "updated_at": now}
            fields["cancelled_at" if status == OrderStatus.CANCELLED else "refunded_at"] = now
            txn.update(ORDERS, order_id, _to_document_fields(fields))
            return order.model_copy(update=fields), True

        order, claimed = self._transact(claim, f"close order {order_id}")
        if not claimed:
            logger.info(f"Order {order_id} is already {order.status.value}; stock left untouched")
            return OrderClosure(order_id=order_id, status=order.status, already_closed=True)

        logger.info(f"Order {status.value.lower()} | order_id={order_id} | reason={reason}")
        stock_restored = None
        if order.holds_stock:
            stock_restored = self._restore_stock(order)
            order = order.model_copy(update={"stock_restored": stock_restored})

        self._dispatch(order, OrderEvent.STATUS_CHANGED)
        return OrderClosure(order_id=order_id, status=status, stock_restored=stock_restored)

    def _restore_stock(self, order: Order) -> bool:
        try:
            self._ledger.restore(order.item_id, order.quantity, order.variation_id)
        except Exception as exc:
            logger.error(
                f"Stock restoration failed, reconcile manually | order_id={order.id} | item_id={order.item_id} | "
                f"variation_id={order.variation_id} | quantity={order.quantity} | error={exc!r}"
            )
            self._record_restoration(order.id, False, str(exc))
            return False
        self._record_restoration(order.id, True, None)
        return True

    def _record_restoration(self, order_id: str, restored: bool, error: Optional[str]) -> None:
        def record(txn: Transaction) -> None:
            self._load(txn, order_id)
            txn.update(
                ORDERS,
                order_id,
                _to_document_fields({"stock_restored": restored, "stock_restore_error": error, "updated_at": utcnow()}),
            )

        try:
            self._transact(record, f"record restoration of order {order_id}")
        except (TransientFailure, OrderNotFound) as exc:
            logger.error(f"Could not record stock restoration outcome on order {order_id}: {exc}")

    def update_order_status(self, order_id: str, status: OrderStatus, reason: Optional[str] = None) -> Order:
        """Move an order to a new status.

        Cancelled and refunded are routed through ``cancel_order`` and
        ``refund_order``; every other transition leaves stock alone.

        Raises:
            OrderNotFound: Unknown order
            InvalidStatusTransition: The order is already cancelled or refunded
        """
        status = OrderStatus(status)
        if status == OrderStatus.CANCELLED:
            self.cancel_order(order_id, reason)
            return self.get_order(order_id)
        if status == OrderStatus.REFUNDED:
            self.refund_order(order_id, reason)
            return self.get_order(order_id)

        def transition(txn: Transaction) -> tuple[Order, bool]:
            order = self._load(txn, order_id)
            if order.is_terminal:
                raise InvalidStatusTransition(order_id, order.status.value, status.value)
            if order.status == status:
                return order, False
            fields = {"status": status, "updated_at": utcnow()}
            txn.update(ORDERS, order_id, _to_document_fields(fields))
            return order.model_copy(update=fields), True

        order, changed = self._transact(transition, f"update status of order {order_id}")
        if changed:
            logger.info(f"Order status changed | order_id={order_id} | status={status.value}")
            self._dispatch(order, OrderEvent.STATUS_CHANGED)
        return order

    def update_order_payment_status(self, payment_reference: str, payment_status: PaymentStatus) -> Order:
        """Record a payment status reported by the payment gateway.

        Completing the payment of a deferred-payment order sends the
        confirmation. Stock was committed at creation and is not touched.

        Raises:
            OrderNotFound: No order carries this payment reference
        """
        payment_status = PaymentStatus(payment_status)
        try:
            matches = self._store.query(ORDERS, filters=[("payment_reference", "==", payment_reference)], limit=1)
        except StoreError as exc:
            raise TransientFailure(f"Could not look up payment reference {payment_reference}: {exc}") from exc
        if not matches:
            raise OrderNotFound(payment_reference, f"No order with payment reference {payment_reference}")
        order_id = matches[0].id

        def apply(txn: Transaction) -> tuple[Order, PaymentStatus]:
            order = self._load(txn, order_id)
            fields = {"payment_status": payment_status, "updated_at": utcnow()}
            txn.update(ORDERS, order_id, _to_document_fields(fields))
            return order.model_copy(update=fields), order.payment_status

        order, previous = self._transact(apply, f"update payment status of order {order_id}")
        logger.info(
            f"Payment status updated | order_id={order_id} | {previous.value} -> {payment_status.value}"
        )
        if (
            payment_status == PaymentStatus.COMPLETED
            and previous != PaymentStatus.COMPLETED
            and order.payment_method in DEFERRED_PAYMENT_METHODS
        ):
            self._dispatch(order, OrderEvent.PAYMENT_COMPLETED)
        return order

    def get_order(self, order_id: str) -> Order:
        """Load an order.

        Raises:
            OrderNotFound: Unknown order
        """
        try:
            doc = self._store.get_document(ORDERS, order_id)
        except StoreError as exc:
            raise TransientFailure(f"Could not read order {order_id}: {exc}") from exc
        if doc is None:
            raise OrderNotFound(order_id)
        return Order.from_document(order_id, doc.data)

    @staticmethod
    def _load(txn: Transaction, order_id: str) -> Order:
        doc = txn.get(ORDERS, order_id)
        if doc is None:
            raise OrderNotFound(order_id)
        return Order.from_document(order_id, doc.data)

    def _transact(self, fn: Callable[[Transaction], T], description: str) -> T:
        try:
            return self._store.run_transaction(fn, max_attempts=self._max_attempts)
        except StoreError as exc:
            raise TransientFailure(f"Could not {description}: {exc}") from exc

    def _dispatch(self, order: Order, event: OrderEvent) -> Optional[Future]:
        """Hand an order event to the notifier without waiting for it."""
        try:
            future = self._executor.submit(self._notifier.notify, order, event)
        except RuntimeError as exc:
            logger.error(f"Could not schedule {event.value} notification for order {order.id}: {exc}")
            return None
        future.add_done_callback(partial(_log_notification_outcome, order.id, event))
        return future

    def close(self, wait: bool = True) -> None:
        """Stop the notification executor, by default after pending notifications ran."""
        self._executor.shutdown(wait=wait)


def _to_document_fields(fields: dict) -> dict:
    """Make field values JSON-safe for storage."""
    converted = {}
    for name, value in fields.items():
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        elif hasattr(value, "value"):
            value = value.value
        converted[name] = value
    return converted


def _log_notification_outcome(order_id: str, event: OrderEvent, future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.opt(exception=exc).error(f"Notification {event.value} failed for order {order_id}: {exc}")
