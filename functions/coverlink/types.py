"""
Records exchanged between the EDI client, the service and the stores.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

COVER_LINKING_STATUS_COMPLETED = "coverlinking completed"

# Substring of the EDI error message for a cover that is already linked.
COVER_ALREADY_EXISTS = "cover already exists"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CoverLinkingRequestState(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class OutcomeKind(enum.Enum):
    LINKED = "LINKED"
    ALREADY_LINKED = "ALREADY_LINKED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class MembershipRecord:
    """A cover the legacy marketing data associates with a phone number."""

    phone: str
    payer_slade_code: str
    member_number: str


@dataclass
class LinkRequest:
    payer_slade_code: int
    member_number: str
    uid: str
    push_token: List[str] = field(default_factory=list)

    def as_payload(self) -> dict:
        return {
            "payerSladeCode": self.payer_slade_code,
            "memberNumber": self.member_number,
            "uid": self.uid,
            "pushToken": list(self.push_token),
        }


@dataclass(frozen=True)
class LinkOutcome:
    kind: OutcomeKind
    message: Optional[str] = None

    @classmethod
    def linked(cls) -> "LinkOutcome":
        return cls(OutcomeKind.LINKED)

    @classmethod
    def already_linked(cls, message: str) -> "LinkOutcome":
        return cls(OutcomeKind.ALREADY_LINKED, message)

    @classmethod
    def failed(cls, message: str) -> "LinkOutcome":
        return cls(OutcomeKind.FAILED, message)


@dataclass(frozen=True)
class AuditEvent:
    """Append-only record that a phone-inferred link attempt finished."""

    member_number: str
    phone_number: str
    status: str = COVER_LINKING_STATUS_COMPLETED
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class ReviewTicket:
    """
    A cover-linking request awaiting manual review.

    Only ever created in the PENDING state here; the admin workflow owns
    every later transition.
    """

    payer_slade_code: int
    member_number: str
    phone_number: str
    error_message: str
    first_name: str = ""
    last_name: str = ""
    read: bool = False
    state: CoverLinkingRequestState = CoverLinkingRequestState.PENDING
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class UserProfile:
    id: str
    verified_uids: List[str] = field(default_factory=list)
    push_tokens: List[str] = field(default_factory=list)
    first_name: str = ""
    last_name: str = ""
    primary_phone: Optional[str] = None
    secondary_phone_numbers: List[str] = field(default_factory=list)
    suspended: bool = False
