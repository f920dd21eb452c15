from __future__ import annotations

import hashlib
import time

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"

    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_resume_id(resume_hash: str) -> str:
    """Opaque resume id: millisecond timestamp in base 36 plus a hash prefix."""
    return f"{to_base36(int(time.time() * 1000))}-{resume_hash[:12]}"
