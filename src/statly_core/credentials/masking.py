"""Display-safe rendering of credential bundles."""
from typing import Mapping


SENSITIVE_MARKERS = ("key", "secret", "token", "private")
MASK = "••••••••"
VISIBLE_CHARS = 4


def is_sensitive_field(field_name: str) -> bool:
    name = field_name.lower()
    return any(marker in name for marker in SENSITIVE_MARKERS)


def mask_value(value: str) -> str:
    """Keep the first and last 4 characters; short values are fully masked."""
    if len(value) < VISIBLE_CHARS * 2:
        return MASK
    return f"{value[:VISIBLE_CHARS]}{MASK}{value[-VISIBLE_CHARS:]}"


def mask_credentials(credentials: Mapping[str, str]) -> dict[str, str]:
    """Mask every sensitive field; other fields are copied as-is."""
    return {
        name: mask_value(str(value)) if is_sensitive_field(name) else str(value)
        for name, value in credentials.items()
    }
