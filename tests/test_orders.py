import pytest

from conftest import consuming_table, line
from errors import NotFound, PreconditionFailed, ValidationError


def assert_totals(order):
    for item in order.items:
        assert item.subtotal == round(item.quantity * item.unit_price, 2)
    assert order.total == round(sum(i.subtotal for i in order.items), 2)


def test_prices_come_from_catalog(pos, menu):
    table = pos.create_table(2)
    order = pos.create_order(table.id, [line(menu["burger"], 2), line(menu["soda"], 3)])
    assert [(i.name, i.unit_price) for i in order.items] == [("Hamburguesa", 5.0), ("Coca Cola", 3.0)]
    assert order.total == 19.0
    assert order.status == "Pending"
    assert_totals(order)


def test_repeated_lines_are_merged(pos, menu):
    table = pos.create_table(2)
    order = pos.create_order(table.id, [line(menu["soda"]), line(menu["soda"], 2)])
    assert len(order.items) == 1
    assert order.items[0].quantity == 3


def test_price_snapshot_survives_menu_change(pos, menu):
    table = pos.create_table(2)
    order = pos.create_order(table.id, [line(menu["burger"])])
    pos.catalog.update_menu_item(menu["burger"].id, {"price": 9.0})
    updated = pos.update_order(order.id, items=[line(menu["burger"], 2)])
    assert updated.items[0].unit_price == 5.0
    assert updated.total == 10.0


def test_empty_cart_rejected(pos):
    table = pos.create_table(2)
    with pytest.raises(ValidationError):
        pos.create_order(table.id, [])
    assert pos.get_table(table.id).state == "Available"


def test_zero_quantity_rejected(pos, menu):
    table = pos.create_table(2)
    with pytest.raises(ValidationError):
        pos.create_order(table.id, [line(menu["burger"], 0)])


def test_unknown_menu_item(pos):
    table = pos.create_table(2)
    with pytest.raises(NotFound):
        pos.create_order(table.id, [{"menu_item_id": 404, "quantity": 1}])


def test_inactive_menu_item_rejected(pos, menu):
    pos.catalog.update_menu_item(menu["cake"].id, {"active": False})
    table = pos.create_table(2)
    with pytest.raises(ValidationError):
        pos.create_order(table.id, [line(menu["cake"])])


def test_second_order_keeps_occupancy_start(pos, menu, clock):
    table = pos.create_table(2)
    pos.create_order(table.id, [line(menu["burger"])])
    started = pos.get_table(table.id).occupied_since
    clock.advance(minutes=5)
    pos.create_order(table.id, [line(menu["soda"])])
    assert pos.get_table(table.id).occupied_since == started
    assert len(pos.list_orders(table_id=table.id)) == 2


def test_paid_table_takes_no_orders(pos, menu):
    table, _ = consuming_table(pos, menu)
    pos.process_payment(table.id, "Efectivo USD", tendered=50)
    with pytest.raises(PreconditionFailed):
        pos.create_order(table.id, [line(menu["soda"])])


def test_update_order_recomputes_total(pos, menu):
    table = pos.create_table(2)
    order = pos.create_order(table.id, [line(menu["burger"])])
    updated = pos.update_order(order.id, items=[line(menu["burger"], 3), line(menu["cake"])])
    assert updated.total == 21.5
    assert_totals(updated)
    assert pos.list_orders(table_id=table.id)[0].total == 21.5


def test_update_order_rejects_mismatched_total(pos, menu):
    table = pos.create_table(2)
    order = pos.create_order(table.id, [line(menu["burger"])])
    with pytest.raises(ValidationError) as exc:
        pos.update_order(order.id, items=[line(menu["burger"], 2)], total=5.0)
    assert exc.value.details["expected"] == 10.0
    assert pos.list_orders()[0].total == 5.0


def test_update_order_with_no_items_rejected(pos, menu):
    table = pos.create_table(2)
    order = pos.create_order(table.id, [line(menu["burger"])])
    with pytest.raises(ValidationError):
        pos.update_order(order.id, items=[])


def test_completed_order_cannot_be_edited(pos, menu):
    table, order = consuming_table(pos, menu)
    pos.process_payment(table.id, "Pagomovil", reference="0412")
    with pytest.raises(PreconditionFailed):
        pos.update_order(order.id, items=[line(menu["soda"])])


def test_delete_order(pos, menu):
    table = pos.create_table(2)
    order = pos.create_order(table.id, [line(menu["burger"])])
    pos.delete_order(order.id)
    assert pos.list_orders() == []
    with pytest.raises(NotFound):
        pos.delete_order(order.id)


def test_order_ids_are_unique_across_tables(pos, menu):
    ids = set()
    for _ in range(3):
        table = pos.create_table(2)
        ids.add(pos.create_order(table.id, [line(menu["soda"])]).id)
        ids.add(pos.create_order(table.id, [line(menu["cake"])]).id)
    assert len(ids) == 6


def test_orders_complete_only_through_payment(pos, menu):
    table, order = consuming_table(pos, menu, line(menu["burger"], 4))
    with pytest.raises(PreconditionFailed):
        pos.update_order(order.id, status="Completed")
    assert pos.list_orders(table_id=table.id)[0].status == "Pending"

    receipt = pos.process_payment(table.id, "Efectivo USD", tendered=20.0)
    assert receipt.sale.total == 20.0
    assert pos.get_table(table.id).state == "Paid"


def test_paid_orders_are_kept(pos, menu):
    table, order = consuming_table(pos, menu)
    pos.process_payment(table.id, "Biopago", reference="B-7")
    with pytest.raises(PreconditionFailed):
        pos.delete_order(order.id)
    assert pos.list_orders(status="Completed")[0].id == order.id
