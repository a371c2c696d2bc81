import pytest

from conftest import consuming_table, line
from errors import PreconditionFailed, ValidationError


def test_cash_payment_returns_change(pos, menu):
    # Consuming table with one order of 20.00, paid with 25.00 USD cash
    table, order = consuming_table(pos, menu, line(menu["burger"], 4))
    assert order.total == 20.0

    receipt = pos.process_payment(table.id, "Efectivo USD", tendered=25.0)

    assert receipt.sale.total == 20.0
    assert receipt.sale.tendered == 25.0
    assert receipt.sale.reference is None
    assert receipt.change == 5.0
    assert receipt.release_in == 10
    paid = pos.get_table(table.id)
    assert paid.state == "Paid"
    assert paid.occupied_since is None
    assert pos.list_orders(table_id=table.id)[0].status == "Completed"


def test_exact_cash_gives_zero_change(pos, menu):
    table, _ = consuming_table(pos, menu, line(menu["burger"], 4))
    receipt = pos.process_payment(table.id, "Efectivo BS", tendered=20.0)
    assert receipt.change == 0.0


def test_short_cash_rejected(pos, menu):
    table, _ = consuming_table(pos, menu, line(menu["burger"], 4))
    with pytest.raises(ValidationError):
        pos.process_payment(table.id, "Efectivo EUR", tendered=19.99)
    assert pos.get_table(table.id).state == "Consuming"
    assert pos.list_sales() == []


def test_sub_cent_shortfall_rejected(pos, menu):
    table, _ = consuming_table(pos, menu, line(menu["burger"], 4))
    with pytest.raises(ValidationError):
        pos.process_payment(table.id, "Efectivo USD", tendered=19.996)
    assert pos.list_sales() == []


def test_cash_needs_tendered_amount(pos, menu):
    table, _ = consuming_table(pos, menu)
    with pytest.raises(ValidationError):
        pos.process_payment(table.id, "Efectivo USD")


@pytest.mark.parametrize("method", ["Pagomovil", "Biopago", "Tarjeta de débito"])
def test_reference_methods_need_reference(pos, menu, method):
    table, _ = consuming_table(pos, menu)
    with pytest.raises(ValidationError):
        pos.process_payment(table.id, method, reference="  ")
    receipt = pos.process_payment(table.id, method, reference="REF-889", tendered=100.0)
    assert receipt.sale.reference == "REF-889"
    assert receipt.sale.tendered is None
    assert receipt.change is None


def test_unknown_method_rejected(pos, menu):
    table, _ = consuming_table(pos, menu)
    with pytest.raises(ValidationError):
        pos.process_payment(table.id, "Bitcoin", reference="x")


def test_total_is_computed_server_side(pos, menu):
    table, _ = consuming_table(pos, menu, line(menu["burger"], 2))
    pos.create_order(table.id, [line(menu["soda"])])
    with pytest.raises(ValidationError) as exc:
        pos.process_payment(table.id, "Efectivo USD", tendered=20.0, total=10.0)
    assert exc.value.details["expected"] == 13.0

    receipt = pos.process_payment(table.id, "Efectivo USD", tendered=20.0, total=13.0)
    assert receipt.sale.total == 13.0
    assert len(receipt.sale.orders) == 2
    assert receipt.change == 7.0


def test_payment_requires_consuming(pos, menu):
    table = pos.create_table(4)
    pos.create_order(table.id, [line(menu["burger"])])
    with pytest.raises(PreconditionFailed):
        pos.process_payment(table.id, "Efectivo USD", tendered=100.0)


def test_payment_without_orders_fails(pos, menu):
    table, order = consuming_table(pos, menu)
    pos.delete_order(order.id)
    with pytest.raises(PreconditionFailed):
        pos.process_payment(table.id, "Efectivo USD", tendered=100.0)


def test_sale_keeps_order_snapshot(pos, menu):
    table, order = consuming_table(pos, menu, line(menu["burger"], 4))
    pos.process_payment(table.id, "Biopago", reference="B-1")
    pos.catalog.update_menu_item(menu["burger"].id, {"price": 9.0})

    sale = pos.list_sales()[0]
    assert sale.orders[0].id == order.id
    assert sale.orders[0].total == 20.0
    assert sale.orders[0].status == "Completed"


def test_earlier_completed_orders_are_not_billed_again(pos, menu):
    table, _ = consuming_table(pos, menu, line(menu["burger"], 4))
    pos.process_payment(table.id, "Efectivo USD", tendered=20.0)
    pos.release_table(table.id)

    pos.create_order(table.id, [line(menu["soda"])])
    pos.start_consuming(table.id)
    receipt = pos.process_payment(table.id, "Efectivo USD", tendered=3.0)
    assert receipt.sale.total == 3.0
    assert sorted(s.total for s in pos.list_sales()) == [3.0, 20.0]
