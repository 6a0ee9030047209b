"""Prefixed business IDs for disputes and dispute messages.

Format: ``{prefix}_{epoch_ms}_{16 hex chars}``, e.g. ``disp_1760000000000_9f86d081884c7d65``.
Sortable by creation time within a prefix; the random suffix makes
collisions between processes negligible.
"""

import secrets
import time


def generate_id(prefix: str) -> str:
    if not prefix or "_" in prefix:
        raise ValueError(f"prefix must be non-empty and contain no underscore: {prefix!r}")
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def dispute_id() -> str:
    return generate_id("disp")


def message_id() -> str:
    return generate_id("msg")
