"""
Error taxonomy for media resolution.

Callers of the resolver receive either a record or one of these failures.
"""

from __future__ import annotations


class MediaCanonError(Exception):
    """Base class for all resolution failures."""


class InvalidIdentifier(MediaCanonError):
    """Malformed identifier. Fatal, never retried."""


class InvalidAlbumIdentifier(InvalidIdentifier):
    """Album identifier matching none of the supported schemes."""


class UpstreamUnavailable(MediaCanonError):
    """Transient upstream failure that survived every retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFound(MediaCanonError):
    """Well-formed identifier that no provider recognizes."""


class Blocked(MediaCanonError):
    """Resolved entity is categorically excluded (disambiguation page, franchise, ...)."""

    def __init__(self, message: str, instance_of: list[str] | None = None):
        super().__init__(message)
        self.instance_of = instance_of or []
