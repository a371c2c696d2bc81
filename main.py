import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings, get_settings
from errors import PosError
from lifecycle import TableLifecycleController
from schemas import (
    CreateInventoryRequest, CreateMenuItemRequest, CreateOrderRequest, CreateTableRequest,
    EditOrdersRequest, LoginRequest, PaymentRequest, ReservationRequest,
    UpdateInventoryRequest, UpdateMenuItemRequest, UpdateOrderRequest, UpdateTableRequest,
    InventoryItem, InventoryView, MenuItem, Order, OrderStatus, PaymentReceipt, Period,
    ReportSummary, Reservation, Sale, Table, TableView, User,
)
from seed import seed_demo_data

logger = logging.getLogger("pos.api")

router = APIRouter()

# Static accounts; authorization beyond these two roles is out of scope
USERS = {
    "admin": ("admin123", User(id="1", username="admin", name="Administrador", role="admin")),
    "mesero": ("mesero123", User(id="2", username="mesero", name="Mesero", role="waiter")),
}


# Helpers

def get_pos(request: Request) -> TableLifecycleController:
    return request.app.state.pos


async def pos_error_handler(request: Request, exc: PosError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.to_dict()})


@router.get("/")
def read_root(request: Request):
    return {"message": request.app.state.settings.app_name}


@router.get("/health")
def health(pos: TableLifecycleController = Depends(get_pos)):
    return {"status": "ok", **pos.stats()}


@router.post("/auth/login", response_model=User)
def login(req: LoginRequest):
    account = USERS.get(req.username.lower())
    if not account or account[0] != req.password:
        raise HTTPException(401, "Invalid credentials")
    return account[1]


# Tables
@router.get("/tables", response_model=List[TableView])
def fetch_tables(pos: TableLifecycleController = Depends(get_pos)):
    return pos.list_tables()


@router.post("/tables", response_model=Table, status_code=201)
def create_table(req: CreateTableRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.create_table(req.capacity, table_id=req.id)


@router.get("/tables/{table_id}", response_model=TableView)
def fetch_table(table_id: str, pos: TableLifecycleController = Depends(get_pos)):
    return pos.get_table(table_id)


@router.patch("/tables/{table_id}", response_model=Table)
def update_table(table_id: str, req: UpdateTableRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.update_table(table_id, req.model_dump(exclude_unset=True))


@router.delete("/tables/{table_id}")
def delete_table(table_id: str, pos: TableLifecycleController = Depends(get_pos)):
    pos.delete_table(table_id)
    return {"ok": True}


@router.post("/tables/{table_id}/consuming", response_model=Table)
def start_consuming(table_id: str, pos: TableLifecycleController = Depends(get_pos)):
    return pos.start_consuming(table_id)


@router.post("/tables/{table_id}/arrival", response_model=Table)
def confirm_arrival(table_id: str, pos: TableLifecycleController = Depends(get_pos)):
    return pos.confirm_arrival(table_id)


@router.post("/tables/{table_id}/reservation", response_model=Reservation, status_code=201)
def reserve_table(table_id: str, req: ReservationRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.reserve_table(
        table_id,
        payment_reference=req.payment_reference,
        reserved_for=req.reserved_for,
        deposit=req.deposit,
        customer_name=req.customer_name,
        phone=req.phone,
    )


@router.delete("/tables/{table_id}/reservation", response_model=Table)
def cancel_reservation(table_id: str, pos: TableLifecycleController = Depends(get_pos)):
    return pos.cancel_reservation(table_id)


@router.post("/tables/{table_id}/orders/edit", response_model=List[Order])
def edit_orders(table_id: str, req: EditOrdersRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.edit_orders(table_id, req.orders, req.cart)


# Payments / Checkout
@router.post("/tables/{table_id}/payment", response_model=PaymentReceipt, status_code=201)
def process_payment(table_id: str, req: PaymentRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.process_payment(
        table_id,
        method=req.method,
        reference=req.reference,
        tendered=req.tendered,
        total=req.total,
    )


@router.post("/tables/{table_id}/release", response_model=Table)
def release_table(table_id: str, pos: TableLifecycleController = Depends(get_pos)):
    return pos.release_table(table_id)


# Orders
@router.get("/orders", response_model=List[Order])
def fetch_orders(
    table_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    pos: TableLifecycleController = Depends(get_pos),
):
    return pos.list_orders(table_id=table_id, status=status)


@router.post("/orders", response_model=Order, status_code=201)
def create_order(req: CreateOrderRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.create_order(req.table_id, req.items)


@router.patch("/orders/{order_id}", response_model=Order)
def update_order(order_id: int, req: UpdateOrderRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.update_order(order_id, items=req.items, total=req.total, status=req.status)


@router.delete("/orders/{order_id}")
def delete_order(order_id: int, pos: TableLifecycleController = Depends(get_pos)):
    pos.delete_order(order_id)
    return {"ok": True}


# Ledgers
@router.get("/sales", response_model=List[Sale])
def fetch_sales(pos: TableLifecycleController = Depends(get_pos)):
    return pos.list_sales()


@router.get("/reservations", response_model=List[Reservation])
def fetch_reservations(pos: TableLifecycleController = Depends(get_pos)):
    return pos.list_reservations()


@router.get("/reports", response_model=ReportSummary)
def fetch_report(period: Period = "current-week", pos: TableLifecycleController = Depends(get_pos)):
    return pos.report(period)


# Menu
@router.get("/menu", response_model=List[MenuItem])
def fetch_menu(active_only: bool = False, pos: TableLifecycleController = Depends(get_pos)):
    return pos.catalog.list_menu(active_only=active_only)


@router.get("/menu/{item_id}", response_model=MenuItem)
def fetch_menu_item(item_id: int, pos: TableLifecycleController = Depends(get_pos)):
    return pos.catalog.get_menu_item(item_id)


@router.post("/menu", response_model=MenuItem, status_code=201)
def create_menu_item(req: CreateMenuItemRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.catalog.add_menu_item(**req.model_dump())


@router.patch("/menu/{item_id}", response_model=MenuItem)
def update_menu_item(item_id: int, req: UpdateMenuItemRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.catalog.update_menu_item(item_id, req.model_dump(exclude_unset=True))


@router.delete("/menu/{item_id}")
def delete_menu_item(item_id: int, pos: TableLifecycleController = Depends(get_pos)):
    pos.catalog.delete_menu_item(item_id)
    return {"ok": True}


# Inventory
@router.get("/inventory", response_model=List[InventoryView])
def fetch_inventory(pos: TableLifecycleController = Depends(get_pos)):
    return pos.catalog.list_inventory(pos.today())


@router.post("/inventory", response_model=InventoryItem, status_code=201)
def create_inventory_item(req: CreateInventoryRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.catalog.add_inventory_item(**req.model_dump())


@router.patch("/inventory/{item_id}", response_model=InventoryItem)
def update_inventory_item(item_id: int, req: UpdateInventoryRequest, pos: TableLifecycleController = Depends(get_pos)):
    return pos.catalog.update_inventory_item(item_id, req.model_dump(exclude_unset=True))


@router.delete("/inventory/{item_id}")
def delete_inventory_item(item_id: int, pos: TableLifecycleController = Depends(get_pos)):
    pos.catalog.delete_inventory_item(item_id)
    return {"ok": True}


def create_app(settings: Optional[Settings] = None, pos: Optional[TableLifecycleController] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if pos is None:
        pos = TableLifecycleController(
            release_grace_seconds=settings.release_grace_seconds,
            tick_seconds=settings.countdown_tick_seconds,
            tz=settings.timezone,
        )
        if settings.seed_demo_data:
            seed_demo_data(pos)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        pos.shutdown()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.pos = pos

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PosError, pos_error_handler)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=get_settings().port)
