"""
Stores for user profiles, cover auto-linking events and cover-linking
review tickets.

Three backends share one shape: an in-memory one for development and tests,
a SQLAlchemy one (Postgres, or SQLite in tests) and a Firestore one matching
the collections the onboarding service writes to.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Protocol

from dacite import Config, from_dict
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from coverlink.exceptions import PersistenceError
from coverlink.types import (
    AuditEvent,
    CoverLinkingRequestState,
    ReviewTicket,
    UserProfile,
)
from shared.firebase_constants import (
    COVER_AUTOLINKING_EVENTS_COLLECTION,
    COVER_LINKING_NOTIFICATIONS_COLLECTION,
    USER_PROFILES_COLLECTION,
    suffix_collection,
)
from shared.json_utils import convert_keys


class ProfileRepository(Protocol):
    def get_user_profile_by_phone_number(
        self,
        phone_number: str,
        include_suspended: bool = False,
        *,
        timeout: Optional[float] = None,
    ) -> Optional[UserProfile]:
        ...


class EventStore(Protocol):
    def save_cover_autolinking_event(
        self, event: AuditEvent, *, timeout: Optional[float] = None
    ) -> str:
        ...


class ReviewQueue(Protocol):
    def save_cover_linking_notification(
        self, ticket: ReviewTicket, *, timeout: Optional[float] = None
    ) -> None:
        ...


def _visible(profile: UserProfile, include_suspended: bool) -> bool:
    return include_suspended or not profile.suspended


class InMemoryRepository:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.profiles: Dict[str, UserProfile] = {}
        self.events: List[AuditEvent] = []
        self.tickets: List[ReviewTicket] = []
        self._lock = threading.Lock()

    def add_profile(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            self.profiles[profile.id] = profile
        return profile

    def get_user_profile_by_phone_number(
        self,
        phone_number: str,
        include_suspended: bool = False,
        *,
        timeout: Optional[float] = None,
    ) -> Optional[UserProfile]:
        with self._lock:
            profiles = list(self.profiles.values())
        # Primary numbers win over secondary ones.
        for profile in profiles:
            if profile.primary_phone == phone_number:
                return profile if _visible(profile, include_suspended) else None
        for profile in profiles:
            if phone_number in profile.secondary_phone_numbers:
                return profile if _visible(profile, include_suspended) else None
        return None

    def save_cover_autolinking_event(
        self, event: AuditEvent, *, timeout: Optional[float] = None
    ) -> str:
        with self._lock:
            self.events.append(event)
        return event.id

    def save_cover_linking_notification(
        self, ticket: ReviewTicket, *, timeout: Optional[float] = None
    ) -> None:
        with self._lock:
            self.tickets.append(ticket)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.profiles.clear()
            self.events.clear()
            self.tickets.clear()


class PostgresRepository:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresRepository")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_user_profile(self, row: "UserProfileRow") -> UserProfile:
        return UserProfile(
            id=row.id,
            verified_uids=list(row.verified_uids or []),
            push_tokens=list(row.push_tokens or []),
            first_name=row.first_name or "",
            last_name=row.last_name or "",
            primary_phone=row.primary_phone,
            secondary_phone_numbers=[p.phone_number for p in row.secondary_phones],
            suspended=bool(row.suspended),
        )

    def add_profile(self, profile: UserProfile) -> UserProfile:
        try:
            with self.Session() as session:
                row = session.get(UserProfileRow, profile.id)
                if row is None:
                    row = UserProfileRow(id=profile.id)
                    session.add(row)
                row.verified_uids = list(profile.verified_uids)
                row.push_tokens = list(profile.push_tokens)
                row.first_name = profile.first_name
                row.last_name = profile.last_name
                row.primary_phone = profile.primary_phone
                row.suspended = profile.suspended
                row.secondary_phones = [
                    SecondaryPhoneRow(phone_number=phone)
                    for phone in profile.secondary_phone_numbers
                ]
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"unable to save user profile: {exc}") from exc
        return profile

    def get_user_profile_by_phone_number(
        self,
        phone_number: str,
        include_suspended: bool = False,
        *,
        timeout: Optional[float] = None,
    ) -> Optional[UserProfile]:
        try:
            with self.Session() as session:
                row = session.execute(
                    select(UserProfileRow)
                    .where(UserProfileRow.primary_phone == phone_number)
                    .limit(1)
                ).scalar_one_or_none()
                if row is None:
                    row = session.execute(
                        select(UserProfileRow)
                        .join(SecondaryPhoneRow)
                        .where(SecondaryPhoneRow.phone_number == phone_number)
                        .limit(1)
                    ).scalar_one_or_none()
                if row is None:
                    return None
                profile = self._to_user_profile(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"unable to read user profile: {exc}") from exc
        return profile if _visible(profile, include_suspended) else None

    def save_cover_autolinking_event(
        self, event: AuditEvent, *, timeout: Optional[float] = None
    ) -> str:
        try:
            with self.Session() as session:
                session.add(
                    AutolinkingEventRow(
                        id=event.id,
                        timestamp=event.timestamp,
                        status=event.status,
                        member_number=event.member_number,
                        phone_number=event.phone_number,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"unable to save cover autolinking event: {exc}"
            ) from exc
        return event.id

    def save_cover_linking_notification(
        self, ticket: ReviewTicket, *, timeout: Optional[float] = None
    ) -> None:
        try:
            with self.Session() as session:
                session.add(
                    CoverLinkingNotificationRow(
                        id=ticket.id,
                        timestamp=ticket.timestamp,
                        read=ticket.read,
                        payer_slade_code=ticket.payer_slade_code,
                        member_number=ticket.member_number,
                        state=ticket.state.value,
                        first_name=ticket.first_name,
                        last_name=ticket.last_name,
                        phone_number=ticket.phone_number,
                        error_message=ticket.error_message,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"unable to save cover linking notification: {exc}"
            ) from exc

    def list_cover_autolinking_events(
        self, phone_number: Optional[str] = None
    ) -> list[AuditEvent]:
        stmt = select(AutolinkingEventRow).order_by(AutolinkingEventRow.timestamp.asc())
        if phone_number:
            stmt = stmt.where(AutolinkingEventRow.phone_number == phone_number)
        try:
            with self.Session() as session:
                rows = session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"unable to list cover autolinking events: {exc}"
            ) from exc
        return [
            AuditEvent(
                id=row.id,
                timestamp=row.timestamp,
                status=row.status,
                member_number=row.member_number,
                phone_number=row.phone_number,
            )
            for row in rows
        ]

    def list_cover_linking_notifications(
        self, state: Optional[CoverLinkingRequestState] = None
    ) -> list[ReviewTicket]:
        stmt = select(CoverLinkingNotificationRow).order_by(
            CoverLinkingNotificationRow.timestamp.asc()
        )
        if state:
            stmt = stmt.where(CoverLinkingNotificationRow.state == state.value)
        try:
            with self.Session() as session:
                rows = session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"unable to list cover linking notifications: {exc}"
            ) from exc
        return [
            ReviewTicket(
                id=row.id,
                timestamp=row.timestamp,
                read=row.read,
                payer_slade_code=row.payer_slade_code,
                member_number=row.member_number,
                state=CoverLinkingRequestState(row.state),
                first_name=row.first_name,
                last_name=row.last_name,
                phone_number=row.phone_number,
                error_message=row.error_message,
            )
            for row in rows
        ]


class FirestoreRepository:
    """
    Firestore-backed implementation over the onboarding collections.

    Documents are camelCase; profiles keep first/last name under
    `userBioData` and their UIDs under `verifiedUIDS`.
    """

    def __init__(
        self,
        client: Any,
        *,
        service_name: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.client = client
        self.profiles_collection = suffix_collection(
            USER_PROFILES_COLLECTION, service_name, environment
        )
        self.events_collection = suffix_collection(
            COVER_AUTOLINKING_EVENTS_COLLECTION, service_name, environment
        )
        self.notifications_collection = suffix_collection(
            COVER_LINKING_NOTIFICATIONS_COLLECTION, service_name, environment
        )

    def _find_profile(
        self, field_name: str, operator: str, value: str, timeout: Optional[float]
    ) -> Optional[dict]:
        query = (
            self.client.collection(self.profiles_collection)
            .where(filter=FieldFilter(field_name, operator, value))
            .limit(1)
        )
        docs = query.get(timeout=timeout)
        if not docs:
            return None
        snapshot = docs[0]
        doc = snapshot.to_dict() or {}
        doc.setdefault("id", snapshot.id)
        return doc

    def get_user_profile_by_phone_number(
        self,
        phone_number: str,
        include_suspended: bool = False,
        *,
        timeout: Optional[float] = None,
    ) -> Optional[UserProfile]:
        try:
            doc = self._find_profile("primaryPhone", "==", phone_number, timeout)
            if doc is None:
                doc = self._find_profile(
                    "secondaryPhoneNumbers", "array-contains", phone_number, timeout
                )
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(f"unable to read user profile: {exc}") from exc
        if doc is None:
            return None

        profile = profile_from_document(doc)
        return profile if _visible(profile, include_suspended) else None

    def save_cover_autolinking_event(
        self, event: AuditEvent, *, timeout: Optional[float] = None
    ) -> str:
        doc = convert_keys(
            {
                "id": event.id,
                "cover_linking_event_time": event.timestamp,
                "cover_status": event.status,
                "member_number": event.member_number,
                "phone_number": event.phone_number,
            },
            "snake_to_camel",
        )
        try:
            self.client.collection(self.events_collection).document(event.id).set(
                doc, timeout=timeout
            )
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(
                f"unable to save cover autolinking event: {exc}"
            ) from exc
        return event.id

    def save_cover_linking_notification(
        self, ticket: ReviewTicket, *, timeout: Optional[float] = None
    ) -> None:
        doc = convert_keys(
            {
                "id": ticket.id,
                "time_stamp": ticket.timestamp,
                "read": ticket.read,
                "payer_slade_code": ticket.payer_slade_code,
                "member_number": ticket.member_number,
                "state": ticket.state.value,
                "first_name": ticket.first_name,
                "last_name": ticket.last_name,
                "phone_number": ticket.phone_number,
                "error_message": ticket.error_message,
            },
            "snake_to_camel",
        )
        try:
            self.client.collection(self.notifications_collection).document(
                ticket.id
            ).set(doc, timeout=timeout)
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(
                f"unable to save cover linking notification: {exc}"
            ) from exc


def profile_from_document(doc: dict) -> UserProfile:
    """Builds a UserProfile from a camelCase Firestore user profile document."""
    data = convert_keys(doc, "camel_to_snake")
    bio = data.pop("user_bio_data", None) or {}
    data.setdefault("first_name", bio.get("first_name") or "")
    data.setdefault("last_name", bio.get("last_name") or "")
    for key in ("verified_uids", "push_tokens", "secondary_phone_numbers"):
        if data.get(key) is None:
            data[key] = []
    return from_dict(
        data_class=UserProfile,
        data=data,
        config=Config(check_types=False),
    )


Base = declarative_base()


class UserProfileRow(Base):
    __tablename__ = "user_profiles"

    id = Column(String, primary_key=True)
    primary_phone = Column(String, nullable=True, index=True)
    verified_uids = Column(JSON, nullable=False, default=list)
    push_tokens = Column(JSON, nullable=False, default=list)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    suspended = Column(Boolean, nullable=False, default=False)

    secondary_phones = relationship(
        "SecondaryPhoneRow", cascade="all, delete-orphan", lazy="selectin"
    )


class SecondaryPhoneRow(Base):
    __tablename__ = "user_profile_secondary_phones"

    profile_id = Column(
        String, ForeignKey("user_profiles.id", ondelete="CASCADE"), primary_key=True
    )
    phone_number = Column(String, primary_key=True, index=True)


class AutolinkingEventRow(Base):
    __tablename__ = "cover_autolinking_events"

    id = Column(String, primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False)
    member_number = Column(String, nullable=False, index=True)
    phone_number = Column(String, nullable=False, index=True)


class CoverLinkingNotificationRow(Base):
    __tablename__ = "cover_linking_notifications"

    id = Column(String, primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    payer_slade_code = Column(Integer, nullable=False)
    member_number = Column(String, nullable=False)
    state = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    phone_number = Column(String, nullable=False, index=True)
    error_message = Column(String, nullable=False)
