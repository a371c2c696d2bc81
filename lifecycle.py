"""Table lifecycle controller.

Every table state transition goes through :class:`TableLifecycleController`.
It serializes the mutations of one table (and that table's orders) behind a
per-table lock, checks the current state, and issues the writes to the
order, sale and reservation ledgers.

    Available --order--> Occupied --consuming--> Consuming --pay--> Paid --release--> Available
    Available --reserve--> Reserved --arrival/order--> Occupied
"""
import itertools
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import ValidationError as SchemaError

from audit import audit
from errors import NotFound, PreconditionFailed, ValidationError
from reporting import build_report
from schemas import (
    CASH_METHODS,
    REFERENCE_METHODS,
    CartLine,
    Order,
    OrderEdit,
    OrderItem,
    PaymentReceipt,
    ReportSummary,
    Reservation,
    ReservationPayload,
    Sale,
    Table,
    TableView,
)
from stores import (
    CatalogStore,
    OrderLedger,
    ReservationLedger,
    SaleLedger,
    StagedOp,
    TableRegistry,
    build_line,
    money,
    order_total,
)

logger = logging.getLogger(__name__)

DEFAULT_RELEASE_GRACE_SECONDS = 10
# Totals closer than this are treated as equal
TOTAL_TOLERANCE = 0.005


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce(model, raw):
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except SchemaError as exc:
        raise ValidationError("Invalid order line: " + "; ".join(e["msg"] for e in exc.errors())) from exc


class _Countdown:
    def __init__(self, token: int, remaining: int):
        self.token = token
        self.remaining = remaining
        self.timer: Optional[threading.Timer] = None


class ReleaseScheduler:
    """Cancellable per-table countdowns driven by a fixed tick.

    Each countdown re-arms a ``threading.Timer`` once per tick and calls
    ``on_expire(table_id, token)`` when it reaches zero. Starting a new
    countdown for a table replaces (and cancels) the previous one; a tick
    that belongs to a replaced or cancelled countdown does nothing.
    """

    def __init__(self, on_expire: Callable[[str, int], None], tick_seconds: float = 1.0):
        self._on_expire = on_expire
        self._tick = tick_seconds
        self._lock = threading.Lock()
        self._countdowns: Dict[str, _Countdown] = {}
        self._tokens = itertools.count(1)

    def start(self, table_id: str, seconds: int) -> int:
        with self._lock:
            self._cancel_locked(table_id)
            countdown = _Countdown(next(self._tokens), seconds)
            self._countdowns[table_id] = countdown
            self._arm(table_id, countdown)
            return countdown.token

    def cancel(self, table_id: str) -> bool:
        with self._lock:
            return self._cancel_locked(table_id)

    def remaining(self, table_id: str) -> Optional[int]:
        with self._lock:
            countdown = self._countdowns.get(table_id)
            return max(countdown.remaining, 0) if countdown else None

    def shutdown(self):
        with self._lock:
            for table_id in list(self._countdowns):
                self._cancel_locked(table_id)

    def _arm(self, table_id: str, countdown: _Countdown):
        timer = threading.Timer(self._tick, self._on_tick, args=(table_id, countdown.token))
        timer.daemon = True
        countdown.timer = timer
        timer.start()

    def _cancel_locked(self, table_id: str) -> bool:
        countdown = self._countdowns.pop(table_id, None)
        if countdown is None:
            return False
        if countdown.timer is not None:
            countdown.timer.cancel()
        return True

    def _on_tick(self, table_id: str, token: int):
        with self._lock:
            countdown = self._countdowns.get(table_id)
            if countdown is None or countdown.token != token:
                logger.debug("Ignoring stale release tick for table %s", table_id)
                return
            countdown.remaining -= 1
            if countdown.remaining > 0:
                self._arm(table_id, countdown)
                return
            del self._countdowns[table_id]
        self._on_expire(table_id, token)


class TableLifecycleController:
    """Owns the ledgers and is the only writer of table state."""

    def __init__(
        self,
        release_grace_seconds: int = DEFAULT_RELEASE_GRACE_SECONDS,
        tick_seconds: float = 1.0,
        tz: str = "UTC",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.catalog = CatalogStore()
        self._tables = TableRegistry()
        self._orders = OrderLedger()
        self._sales = SaleLedger()
        self._reservations = ReservationLedger()

        self._clock = clock
        self._tz = ZoneInfo(tz)
        self._grace = release_grace_seconds
        self._scheduler = ReleaseScheduler(self._release_expired, tick_seconds)
        # Token of the countdown allowed to release each Paid table
        self._release_tokens: Dict[str, int] = {}

        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # Plumbing

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self.now().astimezone(self._tz).date()

    def _lock_for(self, table_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(table_id)
            if lock is None:
                if table_id not in self._tables:
                    raise NotFound(f"Table {table_id} not found")
                lock = self._locks[table_id] = threading.RLock()
            return lock

    @contextmanager
    def _table_lock(self, table_id: str):
        """Hold the table's lock; retry if the table was deleted meanwhile."""
        while True:
            lock = self._lock_for(table_id)
            with lock:
                with self._locks_guard:
                    current = self._locks.get(table_id) is lock
                if current:
                    yield
                    return

    def _reject(self, message: str, **details: Any) -> PreconditionFailed:
        logger.warning("Rejected: %s", message)
        return PreconditionFailed(message, details=details)

    def _require_state(self, table: Table, *allowed: str, action: str):
        if table.state not in allowed:
            raise self._reject(
                f"Table {table.id} is {table.state}; {action} requires {' or '.join(allowed)}",
                table_id=table.id,
                state=table.state,
                allowed=list(allowed),
            )

    def _as_aware(self, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=self._tz)

    def _price_lines(
        self,
        lines: Iterable[Union[CartLine, Dict[str, Any]]],
        existing: Optional[List[OrderItem]] = None,
    ) -> List[OrderItem]:
        """Turn cart lines into priced order items.

        Items already on the order keep their name and price snapshot; new
        ones are priced from the catalog. Repeated menu items are merged.
        """
        snapshots = {i.menu_item_id: i for i in existing or []}
        quantities: Dict[int, int] = {}
        for raw in lines:
            line = _coerce(CartLine, raw)
            quantities[line.menu_item_id] = quantities.get(line.menu_item_id, 0) + line.quantity

        items = []
        for menu_item_id, quantity in quantities.items():
            snapshot = snapshots.get(menu_item_id)
            if snapshot is not None:
                items.append(snapshot.model_copy(update={
                    "quantity": quantity,
                    "subtotal": money(snapshot.unit_price * quantity),
                }))
                continue
            menu_item = self.catalog.get_menu_item(menu_item_id)
            if not menu_item.active:
                raise ValidationError(f"Menu item '{menu_item.name}' is not available")
            items.append(build_line(menu_item, quantity))
        return items

    def _view(self, table: Table) -> TableView:
        view = TableView(**table.model_dump())
        if table.state == "Occupied" and table.occupied_since is not None:
            view.occupied_seconds = max(int((self.now() - table.occupied_since).total_seconds()), 0)
        view.release_in = self._scheduler.remaining(table.id)
        return view

    # Tables

    def list_tables(self) -> List[TableView]:
        return [self._view(t) for t in self._tables.list()]

    def get_table(self, table_id: str) -> TableView:
        return self._view(self._tables.get(table_id))

    def create_table(self, capacity: int, table_id: Optional[str] = None) -> Table:
        if not isinstance(capacity, int) or capacity < 1:
            raise ValidationError("Capacity must be a positive whole number")
        if table_id is not None and not str(table_id).strip():
            raise ValidationError("Table id cannot be blank")
        table = self._tables.add(capacity, table_id=str(table_id).strip() if table_id is not None else None)
        audit("create", "table", table.id, table.model_dump(mode="json"))
        return table

    def update_table(self, table_id: str, changes: Dict[str, Any]) -> Table:
        unknown = set(changes) - {"capacity"}
        if unknown:
            raise ValidationError(
                f"Only capacity can be changed directly; use the table actions for {', '.join(sorted(unknown))}"
            )
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            capacity = changes.get("capacity")
            if capacity is not None:
                if not isinstance(capacity, int) or capacity < 1:
                    raise ValidationError("Capacity must be a positive whole number")
                table.capacity = capacity
            self._tables.save(table)
        audit("update", "table", table_id, changes)
        return table

    def delete_table(self, table_id: str):
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            if self._orders.pending_for(table_id):
                raise self._reject(f"Table {table_id} has pending orders and cannot be deleted", table_id=table_id)
            self._scheduler.cancel(table_id)
            self._release_tokens.pop(table_id, None)
            if table.reservation is not None:
                self._reservations.set_status(table.reservation.reservation_id, "Cancelled")
            self._tables.remove(table_id)
            with self._locks_guard:
                self._locks.pop(table_id, None)
        audit("delete", "table", table_id, None)

    def start_consuming(self, table_id: str) -> Table:
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._require_state(table, "Occupied", action="switching to consuming")
            table.state = "Consuming"
            table.occupied_since = None
            self._tables.save(table)
        audit("update", "table", table_id, {"state": "Consuming"})
        return table

    # Reservations

    def reserve_table(
        self,
        table_id: str,
        payment_reference: str,
        reserved_for: datetime,
        deposit: float,
        customer_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Reservation:
        if not payment_reference or not payment_reference.strip():
            raise ValidationError("A payment reference is required to reserve a table")
        if deposit is None or deposit <= 0:
            raise ValidationError("The reservation deposit must be greater than 0")
        reserved_for = self._as_aware(reserved_for)
        now = self.now()
        if reserved_for <= now:
            raise ValidationError("The reservation date must be in the future")

        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._require_state(table, "Available", action="reserving")
            reservation = self._reservations.add(
                table_id=table_id,
                payment_reference=payment_reference.strip(),
                reserved_for=reserved_for,
                customer_name=customer_name or None,
                phone=phone or None,
                deposit=money(deposit),
                created_at=now,
            )
            table.state = "Reserved"
            table.reservation = ReservationPayload(
                reservation_id=reservation.id,
                payment_reference=reservation.payment_reference,
                reserved_for=reservation.reserved_for,
                customer_name=reservation.customer_name,
                phone=reservation.phone,
                deposit=reservation.deposit,
            )
            self._tables.save(table)
        audit("create", "reservation", reservation.id, reservation.model_dump(mode="json"))
        return reservation

    def _seat(self, table: Table, now: datetime):
        """Move an Available or Reserved table to Occupied."""
        if table.reservation is not None:
            self._reservations.set_status(table.reservation.reservation_id, "Completed")
            audit("update", "reservation", table.reservation.reservation_id, {"status": "Completed"})
        table.state = "Occupied"
        table.occupied_since = now
        table.reservation = None

    def confirm_arrival(self, table_id: str) -> Table:
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._require_state(table, "Reserved", action="confirming arrival")
            self._seat(table, self.now())
            self._tables.save(table)
        audit("update", "table", table_id, {"state": "Occupied"})
        return table

    def cancel_reservation(self, table_id: str) -> Table:
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._require_state(table, "Reserved", action="cancelling a reservation")
            reservation_id = table.reservation.reservation_id
            self._reservations.set_status(reservation_id, "Cancelled")
            table.state = "Available"
            table.reservation = None
            self._tables.save(table)
        audit("update", "reservation", reservation_id, {"status": "Cancelled"})
        return table

    def list_reservations(self) -> List[Reservation]:
        return sorted(self._reservations.list(), key=lambda r: r.created_at, reverse=True)

    # Orders

    def list_orders(self, table_id: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        return self._orders.list(table_id=table_id, status=status)

    def create_order(self, table_id: str, lines: Iterable[Union[CartLine, Dict[str, Any]]]) -> Order:
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._require_state(
                table, "Available", "Reserved", "Occupied", "Consuming", action="taking an order"
            )
            items = self._price_lines(lines)
            if not items:
                raise ValidationError("Add at least one item to the order")
            now = self.now()
            order = self._orders.add(table_id, items, now)
            if table.state in ("Available", "Reserved"):
                self._seat(table, now)
                self._tables.save(table)
        audit("create", "order", order.id, order.model_dump(mode="json"))
        return order

    def _order_table_lock(self, order_id: int):
        return self._table_lock(self._orders.get(order_id).table_id)

    def update_order(
        self,
        order_id: int,
        items: Optional[Iterable[Union[CartLine, Dict[str, Any]]]] = None,
        total: Optional[float] = None,
        status: Optional[str] = None,
    ) -> Order:
        if status is not None and status not in ("Pending", "Completed"):
            raise ValidationError(f"Unknown order status '{status}'")
        if status == "Completed":
            raise self._reject(
                f"Order {order_id} can only be completed by paying the table",
                order_id=order_id,
            )
        with self._order_table_lock(order_id):
            order = self._orders.get(order_id)
            if order.status == "Completed" and (items is not None or status == "Pending"):
                raise self._reject(f"Order {order_id} is already completed", order_id=order_id)
            if items is not None:
                order.items = self._price_lines(items, existing=order.items)
                if not order.items:
                    raise ValidationError(f"Order {order_id} would have no items; delete it instead")
            computed = order_total(order.items)
            if total is not None and abs(total - computed) > TOTAL_TOLERANCE:
                raise ValidationError(
                    f"Order total {total:.2f} does not match its items ({computed:.2f})",
                    details={"expected": computed, "received": total},
                )
            order.total = computed
            if status is not None:
                order.status = status
            order = self._orders.save(order)
        audit("update", "order", order_id, order.model_dump(mode="json"))
        return order

    def delete_order(self, order_id: int):
        with self._order_table_lock(order_id):
            if self._orders.get(order_id).status == "Completed":
                raise self._reject(f"Order {order_id} is paid and kept as history", order_id=order_id)
            self._orders.remove(order_id)
        audit("delete", "order", order_id, None)

    def edit_orders(
        self,
        table_id: str,
        edits: Iterable[Union[OrderEdit, Dict[str, Any]]],
        cart: Iterable[Union[CartLine, Dict[str, Any]]] = (),
    ) -> List[Order]:
        """Reconcile an edit session against the table's pending orders.

        All changes are staged and validated first. If the result would
        leave the table with no items at all, nothing is written.
        """
        edits = [_coerce(OrderEdit, e) for e in edits]
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._require_state(table, "Occupied", "Consuming", action="editing orders")
            pending = {o.id: o for o in self._orders.pending_for(table_id)}
            if not pending:
                raise self._reject(f"Table {table_id} has no orders to edit", table_id=table_id)

            batch: List[StagedOp] = []
            touched = set()
            for edit in edits:
                if edit.order_id in touched:
                    raise ValidationError(f"Order {edit.order_id} appears more than once in the edit")
                touched.add(edit.order_id)
                order = pending.get(edit.order_id)
                if order is None:
                    existing = self._orders.get(edit.order_id)
                    raise self._reject(
                        f"Order {edit.order_id} is not a pending order of table {table_id}",
                        order_id=existing.id,
                        table_id=existing.table_id,
                        status=existing.status,
                    )
                items = self._price_lines(edit.items, existing=order.items)
                if items:
                    batch.append(StagedOp("update", order_id=order.id, items=items))
                else:
                    batch.append(StagedOp("delete", order_id=order.id))

            new_items = self._price_lines(cart)
            remaining = sum(len(op.items) for op in batch if op.op == "update")
            remaining += sum(len(o.items) for oid, o in pending.items() if oid not in touched)
            if remaining + len(new_items) == 0:
                raise self._reject(
                    f"Table {table_id} cannot be left without orders; keep at least one item",
                    table_id=table_id,
                )
            if new_items:
                batch.append(StagedOp("create", table_id=table_id, items=new_items))

            self._orders.commit(batch, self.now())
            result = self._orders.pending_for(table_id)
        for step in batch:
            audit(step.op, "order", step.order_id, {"table_id": table_id, "items": len(step.items)})
        return result

    # Payment & release

    def process_payment(
        self,
        table_id: str,
        method: str,
        reference: Optional[str] = None,
        tendered: Optional[float] = None,
        total: Optional[float] = None,
    ) -> PaymentReceipt:
        if method not in CASH_METHODS and method not in REFERENCE_METHODS:
            raise ValidationError(
                f"Unknown payment method '{method}'",
                details={"allowed": list(REFERENCE_METHODS + CASH_METHODS)},
            )
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._require_state(table, "Consuming", action="processing a payment")
            pending = self._orders.pending_for(table_id)
            if not pending:
                raise self._reject(f"Table {table_id} has no orders to pay", table_id=table_id)

            amount_due = money(sum(o.total for o in pending))
            if total is not None and abs(total - amount_due) > TOTAL_TOLERANCE:
                raise ValidationError(
                    f"The total changed to {amount_due:.2f}; review the bill and try again",
                    details={"expected": amount_due, "received": total},
                )
            change = None
            if method in REFERENCE_METHODS:
                if not reference or not reference.strip():
                    raise ValidationError(f"A payment reference is required for {method}")
                reference, tendered = reference.strip(), None
            else:
                if tendered is None:
                    raise ValidationError(f"Enter the amount received for {method}")
                if tendered < amount_due:
                    raise ValidationError(
                        f"The amount received ({tendered:.2f}) is less than the total ({amount_due:.2f})",
                        details={"total": amount_due, "tendered": tendered},
                    )
                reference = None
                change = money(max(tendered - amount_due, 0))

            now = self.now()
            sale = self._sales.add(
                table_id=table_id,
                method=method,
                reference=reference,
                tendered=tendered,
                total=amount_due,
                created_at=now,
                orders=[o.model_copy(update={"status": "Completed"}) for o in pending],
            )
            self._orders.complete_pending(table_id)
            table.state = "Paid"
            table.occupied_since = None
            self._tables.save(table)
            self._release_tokens[table_id] = self._scheduler.start(table_id, self._grace)
        audit("create", "sale", sale.id, {"table_id": table_id, "method": method, "total": amount_due})
        logger.info("Table %s paid; releasing in %ss", table_id, self._grace)
        return PaymentReceipt(sale=sale, change=change, release_in=self._grace)

    def _clear(self, table: Table):
        table.state = "Available"
        table.occupied_since = None
        table.reservation = None
        self._tables.save(table)
        self._release_tokens.pop(table.id, None)

    def release_table(self, table_id: str) -> Table:
        """Release a Paid table now. Releasing an Available table is a no-op."""
        with self._table_lock(table_id):
            table = self._tables.get(table_id)
            self._scheduler.cancel(table_id)
            if table.state == "Available":
                self._release_tokens.pop(table_id, None)
                return table
            self._require_state(table, "Paid", action="releasing")
            self._clear(table)
        audit("update", "table", table_id, {"state": "Available"})
        return table

    def _release_expired(self, table_id: str, token: int):
        try:
            with self._table_lock(table_id):
                if self._release_tokens.get(table_id) != token:
                    logger.debug("Release countdown for table %s was superseded", table_id)
                    return
                table = self._tables.get(table_id)
                if table.state != "Paid":
                    self._release_tokens.pop(table_id, None)
                    return
                self._clear(table)
        except NotFound:
            logger.debug("Table %s vanished before its release countdown fired", table_id)
            return
        logger.info("Table %s released automatically", table_id)
        audit("update", "table", table_id, {"state": "Available", "auto": True})

    # Sales & reports

    def list_sales(self) -> List[Sale]:
        return sorted(self._sales.list(), key=lambda s: s.created_at, reverse=True)

    def report(self, period: str = "current-week") -> ReportSummary:
        return build_report(self._sales.list(), self._reservations.list(), period, self.now(), self._tz)

    def stats(self) -> Dict[str, int]:
        return {
            "tables": len(self._tables),
            "pending_orders": len(self._orders.list(status="Pending")),
            "sales": len(self._sales),
        }

    def shutdown(self):
        self._scheduler.shutdown()
