import os
import sqlite3
import tempfile

import pytest

from migration.bootstrap import bootstrap
from shop.errors import InvalidArgument


def test_bootstrap_creates_schema_roles_and_admin():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = os.path.join(tmp, "shop.db")

        admin_id = bootstrap(f"sqlite:///{db_path}", admin="superuser", password="superuser", email="root@example.com")
        assert admin_id is not None

        conn = sqlite3.connect(db_path)
        try:
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            assert {"users", "roles", "user_roles", "products", "cart_items", "purchases"} <= tables

            roles = {r[0] for r in conn.execute("SELECT name FROM roles")}
            assert roles == {"user", "admin"}

            granted = {
                r[0]
                for r in conn.execute(
                    "SELECT r.name FROM roles r JOIN user_roles ur ON ur.role_id = r.id WHERE ur.user_id = ?",
                    (admin_id,),
                )
            }
            assert granted == {"user", "admin"}
        finally:
            conn.close()


def test_bootstrap_is_rerunnable():
    with tempfile.TemporaryDirectory() as tmp:
        url = f"sqlite:///{os.path.join(tmp, 'shop.db')}"
        first = bootstrap(url, admin="superuser", password="superuser")
        # second run promotes the existing account instead of failing
        second = bootstrap(url, admin="superuser", password="ignored")
        assert first == second
        assert bootstrap(url) is None


def test_bootstrap_admin_needs_password():
    with pytest.raises(InvalidArgument):
        bootstrap("sqlite://", admin="superuser")
