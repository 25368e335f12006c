"""
Error taxonomy for cover linking.

Only transport, decode, payer-code and profile problems reach callers of the
service. A link the EDI service rejects is not an error: it is recorded as a
review ticket and the raw response is handed back.
"""

from __future__ import annotations

import copy
from typing import Optional


class CoverLinkingError(Exception):
    pass


class TransportError(CoverLinkingError):
    """The outbound call could not be made (network, DNS, timeout)."""


class DeadlineExceededError(TransportError):
    """The caller's deadline expired before the next step could start."""


class UpstreamStatusError(CoverLinkingError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(CoverLinkingError):
    """A request or response body was not the JSON shape we expected."""


class InvalidSladeCodeError(CoverLinkingError, ValueError):
    pass


class ProfileLookupError(CoverLinkingError):
    pass


class PersistenceError(CoverLinkingError):
    """A profile, event or review-ticket store operation failed."""


class UnknownTopicError(CoverLinkingError):
    pass


def with_context(exc: CoverLinkingError, context: str) -> CoverLinkingError:
    """Copy of `exc`, same class and attributes, with `context` prefixed."""
    wrapped = copy.copy(exc)
    wrapped.args = (f"{context}: {exc}",)
    return wrapped
