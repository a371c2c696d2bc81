"""Demo data loaded at startup when ``POS_SEED_DEMO_DATA`` is on."""
from datetime import date

from lifecycle import TableLifecycleController

TABLE_CAPACITIES = (4, 2, 6, 4, 8, 2)

MENU = [
    {"name": "Hamburguesa Clásica", "price": 12.5, "category": "COMIDA"},
    {"name": "Pizza Margherita", "price": 18.0, "category": "COMIDA"},
    {"name": "Ensalada César", "price": 8.5, "category": "COMIDA"},
    {"name": "Coca Cola", "price": 3.0, "category": "BEBIDA"},
    {"name": "Tiramisu", "price": 6.5, "category": "POSTRE"},
    {"name": "Pasta Carbonara", "price": 15.0, "category": "COMIDA"},
]

INVENTORY = [
    {"name": "Carne de Res", "quantity": 15, "unit": "kg", "expires_on": date(2025, 1, 10),
     "category": "Carnes", "purchase_price": 8.5},
    {"name": "Tomates", "quantity": 3, "unit": "kg", "expires_on": date(2025, 1, 8),
     "category": "Vegetales", "purchase_price": 2.5},
    {"name": "Queso Mozzarella", "quantity": 8, "unit": "kg", "expires_on": date(2025, 1, 15),
     "category": "Lácteos", "purchase_price": 12.0},
    {"name": "Leche", "quantity": 2, "unit": "litros", "expires_on": date(2025, 1, 6),
     "category": "Lácteos", "purchase_price": 1.8},
    {"name": "Sal", "quantity": 10, "unit": "kg", "expires_on": None,
     "category": "Condimentos", "purchase_price": 1.2},
]


def seed_demo_data(pos: TableLifecycleController):
    for capacity in TABLE_CAPACITIES:
        pos.create_table(capacity)
    for item in MENU:
        pos.catalog.add_menu_item(**item)
    for record in INVENTORY:
        pos.catalog.add_inventory_item(**record)
