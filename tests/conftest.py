import os
from decimal import Decimal
from typing import Generator

# keep bcrypt cheap in tests; must be set before shop.auth is imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest

from shop.cart import CartEngine
from shop.catalog import ProductCatalog
from shop.checkout import CheckoutLedger
from shop.accounts import AccountService
from shop.config import Settings
from shop.db import Database
from shop.schemas import ProductCreate
from shop.users import ADMIN_ROLE, USER_ROLE, CredentialStore, RoleStore

TEST_SETTINGS = Settings(database_url="sqlite://", secret_key="test-secret", log_level="WARNING")


@pytest.fixture(scope="function")
def database() -> Generator:
    # Use in-memory SQLite with a single connection
    db = Database("sqlite://").open()
    db.create_all()
    RoleStore(db).ensure_roles(USER_ROLE, ADMIN_ROLE)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def credentials(database):
    return CredentialStore(database)


@pytest.fixture
def roles(database):
    return RoleStore(database)


@pytest.fixture
def catalog(database):
    return ProductCatalog(database, max_page_size=TEST_SETTINGS.max_page_size)


@pytest.fixture
def cart(database):
    return CartEngine(database)


@pytest.fixture
def ledger(database):
    return CheckoutLedger(database)


@pytest.fixture
def accounts(database, credentials, roles, ledger):
    return AccountService(database, credentials, roles, ledger)


@pytest.fixture
def make_user(credentials, roles):
    def _make(username="shopper1", password="secret1", balance="0", role_names=(USER_ROLE,), email=None):
        user_id = credentials.create_user(username, email or f"{username}@example.com", password)
        for name in role_names:
            roles.grant_role(user_id, name)
        if Decimal(balance):
            credentials.credit_balance(username, Decimal(balance))
        return user_id

    return _make


@pytest.fixture
def make_product(catalog):
    def _make(name="Widget", price="9.99", quantity=5, description=None):
        return catalog.create_product(
            ProductCreate(
                name=name,
                description=description,
                price=Decimal(price) if price is not None else None,
                quantity=quantity,
            )
        )

    return _make


@pytest.fixture(scope="function")
def client(database):
    from fastapi.testclient import TestClient
    from shop.main import create_app

    app = create_app(settings=TEST_SETTINGS, database=database)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def login(client):
    def _login(username, password="secret1"):
        r = client.post("/login", data={"txtUser": username, "txtPwd": password}, follow_redirects=False)
        assert r.status_code == 303, r.text
        return r

    return _login
