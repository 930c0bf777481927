"""Identifier helpers."""

import re
import uuid


def generate_id(prefix: str = "bantai", delimiter: str = ":") -> str:
    """Mint a unique id such as ``eval:3f2a...``."""
    return f"{prefix}{delimiter}{uuid.uuid4().hex}"


def normalize_id(name: str) -> str:
    """Slugify a display name: ``"Is Adult"`` -> ``"is-adult"``."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower().strip())
    return slug.strip("-")
