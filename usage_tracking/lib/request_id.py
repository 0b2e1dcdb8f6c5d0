"""Request identifiers for log correlation."""

from __future__ import annotations

import secrets
import time


def new_request_id() -> str:
    """Return a unique id whose lexical order follows creation time."""

    return f"{time.time_ns():016x}{secrets.token_hex(8)}"
