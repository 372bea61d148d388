from urllib.parse import parse_qs, urlparse

import jwt

from shop.auth import create_identity_token, read_identity_token
from shop.gate import AccessGate
from shop.users import ADMIN_ROLE, USER_ROLE

SECRET = "gate-secret"


def _query(url):
    parsed = urlparse(url)
    assert parsed.path == "/login"
    return {k: v[0] for k, v in parse_qs(parsed.query).items()}


def test_token_round_trip_and_tamper_detection():
    token = create_identity_token("alice1", SECRET, 60)
    assert read_identity_token(token, SECRET) == "alice1"
    assert read_identity_token(token, "another-secret") is None
    # swap in another user's payload under the original signature
    header, _, signature = token.split(".")
    forged_payload = create_identity_token("mallory", SECRET, 60).split(".")[1]
    assert read_identity_token(".".join([header, forged_payload, signature]), SECRET) is None
    assert read_identity_token("", SECRET) is None
    assert read_identity_token(None, SECRET) is None


def test_expired_token_is_anonymous():
    token = create_identity_token("alice1", SECRET, -10)
    assert read_identity_token(token, SECRET) is None


def test_token_without_subject_is_anonymous():
    token = jwt.encode({"iat": 0}, SECRET, algorithm="HS256")
    assert read_identity_token(token, SECRET) is None


def test_open_route_passes_anyone(roles):
    gate = AccessGate(roles, SECRET)
    anonymous = gate.check(None, (), "/")
    assert anonymous.allowed and anonymous.username is None

    token = create_identity_token("whoever", SECRET, 60)
    known = gate.check(token, (), "/")
    assert known.allowed and known.username == "whoever"


def test_anonymous_is_sent_to_login_with_return_path(roles):
    gate = AccessGate(roles, SECRET)
    decision = gate.check(None, (USER_ROLE,), "/cart?x=1")
    assert not decision.allowed
    assert _query(decision.redirect_url) == {"returnUrl": "/cart?x=1"}


def test_role_intersection(make_user, roles):
    make_user("plain1", role_names=(USER_ROLE,))
    make_user("boss01", role_names=(ADMIN_ROLE,))
    gate = AccessGate(roles, SECRET)

    plain = create_identity_token("plain1", SECRET, 60)
    boss = create_identity_token("boss01", SECRET, 60)

    assert gate.check(plain, (USER_ROLE, ADMIN_ROLE), "/account").allowed
    assert gate.check(boss, (USER_ROLE, ADMIN_ROLE), "/account").allowed

    denied = gate.check(plain, (ADMIN_ROLE,), "/admin/products")
    assert not denied.allowed
    assert denied.username == "plain1"
    query = _query(denied.redirect_url)
    assert query["returnUrl"] == "/admin/products"
    assert "admin" in query["message"]


def test_deleted_user_token_has_no_roles(make_user, roles, credentials):
    make_user("gone01")
    token = create_identity_token("gone01", SECRET, 60)
    credentials.delete_user("gone01")
    assert not AccessGate(roles, SECRET).check(token, (USER_ROLE,), "/cart").allowed
