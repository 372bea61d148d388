import os
import time
from typing import Optional

import jwt
from passlib.context import CryptContext

# bcrypt with an adaptive cost of 12; pbkdf2_sha256 kept only to verify legacy hashes
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
pwd_context = CryptContext(
    schemes=["bcrypt", "pbkdf2_sha256"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS,
)

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def dummy_verify() -> None:
    """Spend the same effort as a real verify when the user does not exist."""
    pwd_context.dummy_verify()


def create_identity_token(username: str, secret: str, expires_in: int) -> str:
    now = int(time.time())
    payload = {"sub": username, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def read_identity_token(token: Optional[str], secret: str) -> Optional[str]:
    """Return the username carried by a signed token, or None if it is missing, tampered or expired."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None
    sub = payload.get("sub")
    return sub if isinstance(sub, str) and sub else None
