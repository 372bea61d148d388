from decimal import Decimal

import pytest

from shop.errors import NotFound
from shop.models import Role
from shop.users import USER_ROLE


def test_signup_creates_user_with_user_role(accounts, roles, credentials):
    result = accounts.signup("newbie1", "newbie@example.com", "secret1", "secret1")
    assert result.ok
    assert roles.list_roles(result.user_id) == {USER_ROLE}
    assert credentials.verify_credentials("newbie1", "secret1")


def test_signup_collects_all_messages(accounts, make_user):
    make_user("taken01")
    result = accounts.signup("taken01", "a@b", "123", "456")
    assert not result.ok
    assert result.messages[0] == "Fill in all fields correctly:"
    assert "- An invalid email was provided" in result.messages
    assert "- Password should be longer than 5 characters" in result.messages
    assert "- The passwords given are different" in result.messages
    assert "- Username is already taken, please choose a different one" in result.messages


def test_signup_short_username(accounts):
    result = accounts.signup("bob", "bob@example.com", "secret1", "secret1")
    assert result.messages == ["Fill in all fields correctly:", "- Username should be longer than 5 characters"]


def test_update_account(accounts, credentials, make_user):
    make_user("editor1")
    assert accounts.update_account("editor1", "fresh@example.com", "", "") == []
    assert credentials.get_user("editor1").email == "fresh@example.com"

    assert accounts.update_account("editor1", "", "newpass1", "newpass1") == []
    assert credentials.verify_credentials("editor1", "newpass1")

    messages = accounts.update_account("editor1", "x@y", "short", "other")
    assert messages == [
        "- An invalid email was provided",
        "- Password should be longer than 5 characters",
        "- The passwords given are different",
    ]
    # nothing applied when invalid
    assert credentials.get_user("editor1").email == "fresh@example.com"


def test_delete_account_cascades_without_restoring_stock(accounts, cart, ledger, catalog, make_user, make_product):
    user_id = make_user("leaver1", balance="50")
    bought = make_product("Bought", "1.00", 10)
    reserved = make_product("Reserved", "1.00", 10)
    cart.add_to_cart(user_id, bought, 2)
    assert ledger.checkout(user_id).success
    cart.add_to_cart(user_id, reserved, 4)

    accounts.delete_account("leaver1")

    assert accounts.credentials.get_user("leaver1") is None
    assert accounts.roles.list_roles(user_id) == set()
    assert cart.get_cart_items(user_id) == []
    assert ledger.purchases(user_id) == []
    assert catalog.get_product(reserved).quantity == 6
    # the product is no longer referenced, so a plain delete works
    catalog.delete(bought)

    with pytest.raises(NotFound):
        accounts.delete_account("leaver1")


def test_earn_uses_multiplier(accounts, ledger, cart, make_user, make_product):
    user_id = make_user("clicker", balance="10")
    assert accounts.earn("clicker") == Decimal("11.00")

    perk = make_product("Multiplier + 4", "10.00", None)
    cart.add_to_cart(user_id, perk, 1)
    assert ledger.checkout(user_id).success
    assert accounts.earn("clicker") == Decimal("6.00")


def test_details_for_missing_user(accounts):
    with pytest.raises(NotFound):
        accounts.details("nobody")


def test_signup_is_all_or_nothing(accounts, credentials, database):
    # without the role row the whole signup must roll back
    with database.session() as db:
        db.query(Role).filter(Role.name == USER_ROLE).delete()

    with pytest.raises(NotFound):
        accounts.signup("newbie1", "newbie@example.com", "secret1", "secret1")
    assert not credentials.user_exists("newbie1")
