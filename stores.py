"""In-memory ledgers.

Each store owns its collection and an internal lock; callers only ever get
deep copies back, so nothing outside a store can mutate ledger state.
Integer ids come from per-collection counters rather than ``max(id) + 1``.
"""
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as SchemaError

from errors import NotFound, PartialFailure, PreconditionFailed, ValidationError
from schemas import (
    InventoryItem,
    InventoryView,
    MenuItem,
    Order,
    OrderItem,
    Reservation,
    Sale,
    Table,
)

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 5
EXPIRING_WITHIN_DAYS = 3


class IdCounter:
    def __init__(self, start: int = 1):
        self._lock = threading.Lock()
        self._count = itertools.count(start)

    def next(self) -> int:
        with self._lock:
            return next(self._count)


# Helpers

def money(value: float) -> float:
    return round(value, 2)


def build_line(menu_item: MenuItem, quantity: int) -> OrderItem:
    return OrderItem(
        menu_item_id=menu_item.id,
        name=menu_item.name,
        unit_price=menu_item.price,
        quantity=quantity,
        subtotal=money(menu_item.price * quantity),
    )


def order_total(items: Iterable[OrderItem]) -> float:
    return money(sum(i.subtotal for i in items))


def revalidate(model, current, changes: Dict[str, Any]):
    """Merge partial changes into a record and validate the result."""
    try:
        return model(**{**current.model_dump(), **changes})
    except SchemaError as exc:
        raise ValidationError("; ".join(e["msg"] for e in exc.errors())) from exc


def inventory_alert(item: InventoryItem, today: date) -> str:
    if item.expires_on is not None:
        days_left = (item.expires_on - today).days
        if days_left < 0:
            return "expired"
        if days_left <= EXPIRING_WITHIN_DAYS:
            return "expiring"
    if item.quantity <= LOW_STOCK_THRESHOLD:
        return "low-stock"
    return "normal"


# Catalog

class CatalogStore:
    """Menu items and inventory records."""

    def __init__(self):
        self._lock = threading.Lock()
        self._menu: Dict[int, MenuItem] = {}
        self._inventory: Dict[int, InventoryItem] = {}
        self._menu_ids = IdCounter()
        self._inventory_ids = IdCounter()

    def list_menu(self, active_only: bool = False) -> List[MenuItem]:
        with self._lock:
            items = [m.model_copy() for m in self._menu.values()]
        if active_only:
            items = [m for m in items if m.active]
        return items

    def get_menu_item(self, item_id: int) -> MenuItem:
        with self._lock:
            item = self._menu.get(item_id)
            if item is None:
                raise NotFound(f"Menu item {item_id} not found")
            return item.model_copy()

    def add_menu_item(self, **fields: Any) -> MenuItem:
        item = MenuItem(id=self._menu_ids.next(), **fields)
        with self._lock:
            self._menu[item.id] = item
        return item.model_copy()

    def update_menu_item(self, item_id: int, changes: Dict[str, Any]) -> MenuItem:
        with self._lock:
            current = self._menu.get(item_id)
            if current is None:
                raise NotFound(f"Menu item {item_id} not found")
            updated = revalidate(MenuItem, current, changes)
            self._menu[item_id] = updated
            return updated.model_copy()

    def delete_menu_item(self, item_id: int) -> None:
        with self._lock:
            if self._menu.pop(item_id, None) is None:
                raise NotFound(f"Menu item {item_id} not found")

    def list_inventory(self, today: date) -> List[InventoryView]:
        with self._lock:
            items = list(self._inventory.values())
        return [InventoryView(**i.model_dump(), alert=inventory_alert(i, today)) for i in items]

    def add_inventory_item(self, **fields: Any) -> InventoryItem:
        item = InventoryItem(id=self._inventory_ids.next(), **fields)
        with self._lock:
            self._inventory[item.id] = item
        return item.model_copy()

    def update_inventory_item(self, item_id: int, changes: Dict[str, Any]) -> InventoryItem:
        with self._lock:
            current = self._inventory.get(item_id)
            if current is None:
                raise NotFound(f"Inventory item {item_id} not found")
            updated = revalidate(InventoryItem, current, changes)
            self._inventory[item_id] = updated
            return updated.model_copy()

    def delete_inventory_item(self, item_id: int) -> None:
        with self._lock:
            if self._inventory.pop(item_id, None) is None:
                raise NotFound(f"Inventory item {item_id} not found")


# Tables

class TableRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._tables: Dict[str, Table] = {}
        self._ids = IdCounter()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tables)

    def __contains__(self, table_id: str) -> bool:
        with self._lock:
            return table_id in self._tables

    def list(self) -> List[Table]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._tables.values()]

    def get(self, table_id: str) -> Table:
        with self._lock:
            table = self._tables.get(table_id)
            if table is None:
                raise NotFound(f"Table {table_id} not found")
            return table.model_copy(deep=True)

    def add(self, capacity: int, table_id: Optional[str] = None) -> Table:
        with self._lock:
            if table_id is None:
                table_id = str(self._ids.next())
                # Skip numbers already taken by caller-assigned ids
                while table_id in self._tables:
                    table_id = str(self._ids.next())
            elif table_id in self._tables:
                raise PreconditionFailed(f"Table {table_id} already exists")
            table = Table(id=table_id, capacity=capacity)
            self._tables[table_id] = table
            return table.model_copy(deep=True)

    def save(self, table: Table) -> Table:
        with self._lock:
            if table.id not in self._tables:
                raise NotFound(f"Table {table.id} not found")
            self._tables[table.id] = table.model_copy(deep=True)
            return table

    def remove(self, table_id: str) -> None:
        with self._lock:
            if self._tables.pop(table_id, None) is None:
                raise NotFound(f"Table {table_id} not found")


# Orders

@dataclass
class StagedOp:
    """One step of an order batch: ``create``, ``update`` or ``delete``."""
    op: str
    order_id: Optional[int] = None
    table_id: Optional[str] = None
    items: List[OrderItem] = field(default_factory=list)

    def describe(self) -> Dict[str, Any]:
        return {"op": self.op, "order_id": self.order_id}


class OrderLedger:
    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[int, Order] = {}
        self._ids = IdCounter()

    def list(self, table_id: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        with self._lock:
            orders = list(self._orders.values())
        if table_id is not None:
            orders = [o for o in orders if o.table_id == table_id]
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return [o.model_copy(deep=True) for o in orders]

    def pending_for(self, table_id: str) -> List[Order]:
        return self.list(table_id=table_id, status="Pending")

    def get(self, order_id: int) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            return order.model_copy(deep=True)

    def add(self, table_id: str, items: List[OrderItem], created_at: datetime) -> Order:
        with self._lock:
            return self._create(table_id, items, created_at).model_copy(deep=True)

    def save(self, order: Order) -> Order:
        with self._lock:
            self._update(order.id, order.items, status=order.status)
            return self._orders[order.id].model_copy(deep=True)

    def remove(self, order_id: int) -> None:
        with self._lock:
            self._delete(order_id)

    def complete_pending(self, table_id: str) -> List[Order]:
        """Mark every Pending order of the table Completed and return them."""
        with self._lock:
            completed = []
            for order in self._orders.values():
                if order.table_id == table_id and order.status == "Pending":
                    order.status = "Completed"
                    completed.append(order.model_copy(deep=True))
            return completed

    def commit(self, batch: List[StagedOp], created_at: datetime) -> List[Order]:
        """Apply a validated batch in one critical section.

        Steps run in order; if one raises, :class:`PartialFailure` reports
        which step failed and which had already been applied.
        """
        results: List[Order] = []
        with self._lock:
            applied: List[Dict[str, Any]] = []
            for index, step in enumerate(batch):
                try:
                    if step.op == "delete":
                        self._delete(step.order_id)
                    elif step.op == "update":
                        results.append(self._update(step.order_id, step.items).model_copy(deep=True))
                    elif step.op == "create":
                        created = self._create(step.table_id, step.items, created_at)
                        step.order_id = created.id
                        results.append(created.model_copy(deep=True))
                    else:
                        raise ValueError(f"unknown batch operation {step.op!r}")
                except Exception as exc:
                    logger.error("Order batch failed at step %d (%s): %s", index, step.op, exc)
                    raise PartialFailure(
                        f"Saving order changes failed at step {index + 1} of {len(batch)}",
                        details={
                            "failed_step": index,
                            "operation": step.describe(),
                            "applied": applied,
                            "reason": str(exc),
                        },
                    ) from exc
                applied.append(step.describe())
        return results

    # Unlocked primitives; callers hold self._lock

    def _create(self, table_id: str, items: List[OrderItem], created_at: datetime) -> Order:
        if not items:
            raise ValidationError("An order needs at least one item")
        order = Order(
            id=self._ids.next(),
            table_id=table_id,
            items=items,
            total=order_total(items),
            status="Pending",
            created_at=created_at,
        )
        self._orders[order.id] = order
        return order

    def _update(self, order_id: int, items: List[OrderItem], status: Optional[str] = None) -> Order:
        if not items:
            raise ValidationError(f"Order {order_id} would have no items; delete it instead")
        current = self._orders.get(order_id)
        if current is None:
            raise NotFound(f"Order {order_id} not found")
        updated = current.model_copy(
            update={"items": list(items), "total": order_total(items), "status": status or current.status},
            deep=True,
        )
        self._orders[order_id] = updated
        return updated

    def _delete(self, order_id: int) -> None:
        if self._orders.pop(order_id, None) is None:
            raise NotFound(f"Order {order_id} not found")


# Sales & reservations

class SaleLedger:
    """Append-only; a sale is never modified once recorded."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sales: List[Sale] = []
        self._ids = IdCounter()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sales)

    def add(self, **fields: Any) -> Sale:
        sale = Sale(id=self._ids.next(), **fields)
        with self._lock:
            self._sales.append(sale)
        return sale.model_copy(deep=True)

    def list(self) -> List[Sale]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sales]


class ReservationLedger:
    def __init__(self):
        self._lock = threading.Lock()
        self._reservations: Dict[int, Reservation] = {}
        self._ids = IdCounter()

    def add(self, **fields: Any) -> Reservation:
        reservation = Reservation(id=self._ids.next(), status="Active", **fields)
        with self._lock:
            self._reservations[reservation.id] = reservation
        return reservation.model_copy()

    def get(self, reservation_id: int) -> Reservation:
        with self._lock:
            reservation = self._reservations.get(reservation_id)
            if reservation is None:
                raise NotFound(f"Reservation {reservation_id} not found")
            return reservation.model_copy()

    def set_status(self, reservation_id: int, status: str) -> Reservation:
        with self._lock:
            reservation = self._reservations.get(reservation_id)
            if reservation is None:
                raise NotFound(f"Reservation {reservation_id} not found")
            reservation.status = status
            return reservation.model_copy()

    def list(self) -> List[Reservation]:
        with self._lock:
            return [r.model_copy() for r in self._reservations.values()]
