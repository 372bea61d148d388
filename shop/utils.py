import html
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
import bleach

MIN_FIELD_LENGTH = 6

_MULTIPLIER_PERK = re.compile(r"Multiplier\s*\+\s*(\d+)", re.IGNORECASE)


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied string for safe display and search.

    - Strips HTML tags using bleach.clean(..., strip=True), then undoes the
      entity escaping bleach applies so characters like "&" match literally
    - Removes obvious SQL metacharacters like '--' and ';'
    - Trims whitespace
    """
    if value is None:
        return ""
    # remove NULL bytes
    val = value.replace("\x00", "")
    # strip tags
    val = html.unescape(bleach.clean(val, strip=True))
    # remove common SQL comment and statement separators
    val = re.sub(r"(--|;)", "", val)
    return val.strip()


def escape_like(value: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so the term matches literally."""
    return (
        value.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


# Business rule: money stored rounded to 2 decimals

def round_amount(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _long_enough(value: Optional[str]) -> bool:
    return bool(value) and len(value) >= MIN_FIELD_LENGTH


def validate_signup(
    username: Optional[str],
    email: Optional[str],
    password: Optional[str],
    confirm_password: Optional[str],
    username_taken: bool,
) -> List[str]:
    """Collect every problem with a signup form; an empty list means valid."""
    messages = []
    if not _long_enough(username):
        messages.append("- Username should be longer than 5 characters")
    if not _long_enough(email):
        messages.append("- An invalid email was provided")
    if not _long_enough(password):
        messages.append("- Password should be longer than 5 characters")
    if (password or "") != (confirm_password or ""):
        messages.append("- The passwords given are different")
    if username_taken:
        messages.append("- Username is already taken, please choose a different one")
    if messages:
        messages.insert(0, "Fill in all fields correctly:")
    return messages


def validate_account_update(
    email: Optional[str],
    password: Optional[str],
    confirm_password: Optional[str],
) -> List[str]:
    """Empty fields mean "leave unchanged"; filled ones must be valid."""
    messages = []
    if email and not _long_enough(email):
        messages.append("- An invalid email was provided")
    if (password or confirm_password) and not _long_enough(password):
        messages.append("- Password should be longer than 5 characters")
    if (password or "") != (confirm_password or ""):
        messages.append("- The passwords given are different")
    return messages


def parse_product_perk(product_name: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
    """Products named like "Multiplier + 5" grant a balance multiplier bonus."""
    if not product_name:
        return None, None
    match = _MULTIPLIER_PERK.search(product_name)
    if match:
        return "multiplier", int(match.group(1))
    return None, None
