from decimal import Decimal

import pytest

from shop.errors import InvalidArgument, NotFound, OutOfStock


def test_add_reserves_stock(cart, catalog, make_user, make_product):
    user_id = make_user()
    pid = make_product("Widget", "9.99", 5)

    assert cart.add_to_cart(user_id, pid, 3) == 3
    assert catalog.get_product(pid).quantity == 2

    items = cart.get_cart_items(user_id)
    assert len(items) == 1
    line = items[0]
    assert (line.product_id, line.quantity, line.unit_price, line.remaining_stock) == (pid, 3, Decimal("9.99"), 2)
    assert line.line_total == Decimal("29.97")


def test_out_of_stock_leaves_state_unchanged(cart, catalog, make_user, make_product):
    user_id = make_user()
    pid = make_product("Widget", "9.99", 5)
    cart.add_to_cart(user_id, pid, 3)

    with pytest.raises(OutOfStock) as exc:
        cart.add_to_cart(user_id, pid, 10)
    assert exc.value.available == 2
    assert catalog.get_product(pid).quantity == 2
    assert [i.quantity for i in cart.get_cart_items(user_id)] == [3]


def test_adding_twice_merges_lines(cart, catalog, make_user, make_product):
    user_id = make_user()
    pid = make_product("Widget", "1.00", 10)
    cart.add_to_cart(user_id, pid, 2)
    assert cart.add_to_cart(user_id, pid, 3) == 5

    items = cart.get_cart_items(user_id)
    assert len(items) == 1
    assert items[0].quantity == 5
    assert catalog.get_product(pid).quantity == 5


def test_remove_restores_stock(cart, catalog, make_user, make_product):
    user_id = make_user()
    pid = make_product("Widget", "1.00", 4)
    cart.add_to_cart(user_id, pid, 4)
    assert catalog.get_product(pid).quantity == 0

    assert cart.remove_from_cart(user_id, pid) == 4
    assert catalog.get_product(pid).quantity == 4
    assert cart.get_cart_items(user_id) == []

    with pytest.raises(NotFound):
        cart.remove_from_cart(user_id, pid)


def test_stock_never_negative_over_a_sequence(cart, catalog, make_user, make_product):
    alice = make_user("alice1")
    bob = make_user("bob123")
    pid = make_product("Widget", "1.00", 3)

    for user_id, qty in [(alice, 2), (bob, 2), (bob, 1), (alice, 1)]:
        try:
            cart.add_to_cart(user_id, pid, qty)
        except OutOfStock:
            pass
        assert catalog.get_product(pid).quantity >= 0

    cart.remove_from_cart(alice, pid)
    cart.remove_from_cart(bob, pid)
    assert catalog.get_product(pid).quantity == 3


def test_unlimited_stock_always_succeeds(cart, catalog, make_user, make_product):
    user_id = make_user()
    pid = make_product("Air", "0.10", None)
    cart.add_to_cart(user_id, pid, 1000)
    assert catalog.get_product(pid).quantity is None
    assert cart.get_cart_items(user_id)[0].remaining_stock is None
    cart.remove_from_cart(user_id, pid)
    assert catalog.get_product(pid).quantity is None


def test_invalid_additions(cart, make_user, make_product):
    user_id = make_user()
    pid = make_product("Widget", "1.00", 5)
    unpriced = make_product("Prototype", None, 5)

    with pytest.raises(InvalidArgument):
        cart.add_to_cart(user_id, pid, 0)
    with pytest.raises(InvalidArgument):
        cart.add_to_cart(user_id, pid, "abc")
    with pytest.raises(InvalidArgument):
        cart.add_to_cart(user_id, unpriced, 1)
    with pytest.raises(NotFound):
        cart.add_to_cart(user_id, 9999, 1)
    with pytest.raises(NotFound):
        cart.add_to_cart(9999, pid, 1)


def test_clear_cart_does_not_restore_stock(cart, catalog, make_user, make_product):
    user_id = make_user()
    pid = make_product("Widget", "2.50", 5)
    other = make_product("Gadget", "1.00", 5)
    cart.add_to_cart(user_id, pid, 2)
    cart.add_to_cart(user_id, other, 1)
    assert cart.cart_total(user_id) == Decimal("6.00")

    assert cart.clear_cart(user_id) == 2
    assert cart.get_cart_items(user_id) == []
    assert catalog.get_product(pid).quantity == 3
    assert catalog.get_product(other).quantity == 4
