# publish_cache/errors.py
"""Error types raised by the publish cache and the storage-error classifier."""
from sqlalchemy.exc import OperationalError, ProgrammingError


class PublishCacheError(Exception):
    """Base class for publish cache errors."""

    def __init__(self, message: str = "Publish cache error"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(PublishCacheError):
    """A country, category, city, neighborhood or listing name did not resolve."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ValidationError(PublishCacheError):
    """Request input is inconsistent or out of range."""

    def __init__(self, message: str = "Validation error"):
        super().__init__(message)


class RebuildInProgressError(PublishCacheError):
    """Another worker holds the rebuild claim for the segment."""

    def __init__(self, country_id, category_id):
        self.country_id = country_id
        self.category_id = category_id
        super().__init__(f"Rebuild already in progress for segment ({country_id}, {category_id})")


class RebuildSupersededError(RebuildInProgressError):
    """A newer rebuild took over the segment's claim before this one finished."""

    def __init__(self, country_id, category_id):
        super().__init__(country_id, category_id)
        self.message = f"Rebuild of segment ({country_id}, {category_id}) was superseded by a newer rebuild"
        self.args = (self.message,)


_MISSING_RELATION_MARKERS = ("does not exist", "no such table", "undefinedtable")


def is_missing_relation(exc: Exception) -> bool:
    """True when ``exc`` is the storage layer reporting an unknown table."""
    if not isinstance(exc, (OperationalError, ProgrammingError)):
        return False
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == "42P01":
        return True
    text = str(orig if orig is not None else exc).lower()
    return any(marker in text for marker in _MISSING_RELATION_MARKERS)
