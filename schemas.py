"""
POS Schemas (in-memory ledgers via Pydantic)

Each entity model below is what a ledger in ``stores.py`` holds; the request
DTOs at the bottom are used for validation at the API boundary.
"""
from datetime import date, datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, conint, confloat

TableState = Literal["Available", "Occupied", "Consuming", "Paid", "Reserved"]
OrderStatus = Literal["Pending", "Completed"]
ReservationStatus = Literal["Active", "Completed", "Cancelled"]
PaymentMethod = Literal[
    "Pagomovil",
    "Biopago",
    "Tarjeta de débito",
    "Efectivo BS",
    "Efectivo USD",
    "Efectivo EUR",
]
MenuCategory = Literal["COMIDA", "BEBIDA", "POSTRE"]
InventoryCategory = Literal["Carnes", "Vegetales", "Lácteos", "Bebidas", "Condimentos", "Otros"]
InventoryAlert = Literal["expired", "expiring", "low-stock", "normal"]
Period = Literal["current-week", "previous-week", "current-month", "previous-month"]

CASH_METHODS = ("Efectivo BS", "Efectivo USD", "Efectivo EUR")
REFERENCE_METHODS = ("Pagomovil", "Biopago", "Tarjeta de débito")


# Catalog
class MenuItem(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: confloat(gt=0)
    category: MenuCategory
    image_url: Optional[str] = None
    active: bool = True

class InventoryItem(BaseModel):
    id: int
    name: str
    quantity: confloat(ge=0)
    unit: str
    expires_on: Optional[date] = None
    category: InventoryCategory = "Otros"
    purchase_price: confloat(gt=0)

class InventoryView(InventoryItem):
    alert: InventoryAlert = "normal"


# Tables
class ReservationPayload(BaseModel):
    """Read-only copy of the active reservation, kept on the table for display."""
    reservation_id: int
    payment_reference: str
    reserved_for: datetime
    customer_name: Optional[str] = None
    phone: Optional[str] = None
    deposit: confloat(gt=0)

class Table(BaseModel):
    id: str
    capacity: conint(gt=0)
    state: TableState = "Available"
    occupied_since: Optional[datetime] = None
    reservation: Optional[ReservationPayload] = None

class TableView(Table):
    # Derived on read, never stored
    occupied_seconds: Optional[int] = None
    release_in: Optional[int] = None


# Orders
class OrderItem(BaseModel):
    """Line item inside an order (name and price snapshot captured at order time)."""
    menu_item_id: int
    name: str
    unit_price: confloat(gt=0)
    quantity: conint(ge=1)
    subtotal: confloat(gt=0)

class Order(BaseModel):
    id: int
    table_id: str
    items: List[OrderItem]
    total: confloat(ge=0)
    status: OrderStatus = "Pending"
    created_at: datetime


# Sales & reservations
class Sale(BaseModel):
    id: int
    table_id: str
    method: PaymentMethod
    reference: Optional[str] = None
    tendered: Optional[float] = None
    total: confloat(ge=0)
    created_at: datetime
    orders: List[Order]

class PaymentReceipt(BaseModel):
    sale: Sale
    change: Optional[float] = None
    release_in: Optional[int] = None

class Reservation(BaseModel):
    id: int
    table_id: str
    payment_reference: str
    reserved_for: datetime
    customer_name: Optional[str] = None
    phone: Optional[str] = None
    deposit: confloat(gt=0)
    created_at: datetime
    status: ReservationStatus = "Active"


# Reports
class ReportSummary(BaseModel):
    period: Period
    start: datetime
    end: datetime
    total_billed: float
    total_deposits: float
    sales_count: int
    reservations_count: int
    top_payment_method: str
    sales: List[Sale]
    reservations: List[Reservation]


class User(BaseModel):
    id: str
    username: str
    name: str
    role: Literal["admin", "waiter"]


# Request DTOs
class LoginRequest(BaseModel):
    username: str
    password: str

class CreateTableRequest(BaseModel):
    capacity: conint(gt=0)
    id: Optional[str] = Field(None, min_length=1, description="Leave empty to allocate the next number")

class UpdateTableRequest(BaseModel):
    # State changes go through the transition endpoints only
    model_config = ConfigDict(extra="forbid")

    capacity: Optional[conint(gt=0)] = None

class CartLine(BaseModel):
    menu_item_id: int
    quantity: conint(gt=0) = 1

class CreateOrderRequest(BaseModel):
    table_id: str
    items: List[CartLine]

class UpdateOrderRequest(BaseModel):
    items: Optional[List[CartLine]] = None
    total: Optional[confloat(ge=0)] = None
    status: Optional[OrderStatus] = None

class OrderEdit(BaseModel):
    order_id: int
    items: List[CartLine] = Field(default_factory=list, description="Empty list removes the order")

class EditOrdersRequest(BaseModel):
    orders: List[OrderEdit] = Field(default_factory=list)
    cart: List[CartLine] = Field(default_factory=list)

class PaymentRequest(BaseModel):
    method: PaymentMethod
    reference: Optional[str] = None
    tendered: Optional[confloat(gt=0)] = None
    total: Optional[confloat(ge=0)] = Field(None, description="Client-side total; rejected if stale")

class ReservationRequest(BaseModel):
    payment_reference: str
    reserved_for: datetime
    customer_name: Optional[str] = None
    phone: Optional[str] = None
    deposit: confloat(gt=0)

class CreateMenuItemRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: confloat(gt=0)
    category: MenuCategory
    image_url: Optional[str] = None
    active: bool = True

class UpdateMenuItemRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[confloat(gt=0)] = None
    category: Optional[MenuCategory] = None
    image_url: Optional[str] = None
    active: Optional[bool] = None

class CreateInventoryRequest(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: confloat(ge=0)
    unit: str
    expires_on: Optional[date] = None
    category: InventoryCategory = "Otros"
    purchase_price: confloat(gt=0)

class UpdateInventoryRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    quantity: Optional[confloat(ge=0)] = None
    unit: Optional[str] = None
    expires_on: Optional[date] = None
    category: Optional[InventoryCategory] = None
    purchase_price: Optional[confloat(gt=0)] = None
