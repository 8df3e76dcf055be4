# publish_cache/naming.py
"""Segment identity: (country name, category name) -> cache identifier."""
import re

from .errors import ValidationError

TABLE_PREFIX = "publish"

_INVALID_CHARS = re.compile(r"[^a-z0-9]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def sanitize_identifier(name: str) -> str:
    """Lower-case ``name`` and reduce it to ``[a-z0-9_]`` without edge or doubled underscores."""
    cleaned = _INVALID_CHARS.sub("_", (name or "").lower())
    return _REPEATED_UNDERSCORES.sub("_", cleaned).strip("_")


def segment_table_name(country_name: str, category_name: str) -> str:
    """Return ``publish_<country>_<category>`` for the two display names.

    Names that only differ in case or punctuation map to the same identifier
    and are treated as one segment.
    """
    country = sanitize_identifier(country_name)
    category = sanitize_identifier(category_name)
    if not country or not category:
        raise ValidationError(
            f"Cannot derive a segment name from country={country_name!r}, category={category_name!r}"
        )
    return f"{TABLE_PREFIX}_{country}_{category}"
