"""Human-readable order numbers: ``ORD-YYYYMMDD-XXXXXX``.

The order number is the merchant reference sent to every gateway, so it is
unique and unrelated to the internal id.
"""

import secrets
import string
from datetime import UTC, datetime

from storefront.errors import ConcurrentUpdate

_ALPHABET = string.ascii_uppercase + string.digits
_MAX_ATTEMPTS = 5


def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"ORD-{now:%Y%m%d}-{suffix}"


def next_order_number(repo, now: datetime | None = None) -> str:
    """A fresh order number not yet used by any order in ``repo``."""
    for _ in range(_MAX_ATTEMPTS):
        candidate = generate_order_number(now)
        if repo.find_by_order_number(candidate) is None:
            return candidate
    raise ConcurrentUpdate("Could not allocate a unique order number, please retry", field="order_number")
