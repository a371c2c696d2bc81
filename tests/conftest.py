import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from config import Settings
from lifecycle import TableLifecycleController
from main import create_app


class FakeClock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    # A Wednesday
    return FakeClock(datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def pos(clock):
    # Long tick so no countdown fires on its own during a test
    controller = TableLifecycleController(release_grace_seconds=10, tick_seconds=60, clock=clock)
    yield controller
    controller.shutdown()


@pytest.fixture
def menu(pos):
    burger = pos.catalog.add_menu_item(name="Hamburguesa", price=5.0, category="COMIDA")
    soda = pos.catalog.add_menu_item(name="Coca Cola", price=3.0, category="BEBIDA")
    cake = pos.catalog.add_menu_item(name="Tiramisu", price=6.5, category="POSTRE")
    return {"burger": burger, "soda": soda, "cake": cake}


@pytest.fixture
def client():
    settings = Settings(_env_file=None, seed_demo_data=True, countdown_tick_seconds=60, log_level="WARNING")
    with TestClient(create_app(settings)) as c:
        yield c


def line(item, quantity=1):
    return {"menu_item_id": item.id, "quantity": quantity}


def consuming_table(pos, menu, *lines):
    """Create a table, take an order on it and move it to Consuming."""
    table = pos.create_table(4)
    order = pos.create_order(table.id, list(lines) or [line(menu["burger"], 4)])
    pos.start_consuming(table.id)
    return table, order


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
