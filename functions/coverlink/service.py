"""
Cover auto-linking: attach the covers EDI knows about to a user's profile.

`link_cover` infers the cover from the legacy marketing data for a phone
number; `link_edi_member_cover` is used when the member number and payer are
already known (a slader who followed the EDI text-message link and signed up).
A rejected link becomes a review ticket for staff, unless EDI reports that
the cover already exists.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from coverlink.deadline import Deadline, timeout_for
from coverlink.db import EventStore, ProfileRepository, ReviewQueue
from coverlink.edi import (
    EdiClient,
    build_link_request,
    classify_link_response,
    fetch_slader_data,
    post_link_request,
)
from coverlink.exceptions import (
    CoverLinkingError,
    PersistenceError,
    ProfileLookupError,
    with_context,
)
from coverlink.types import (
    AuditEvent,
    LinkRequest,
    OutcomeKind,
    ReviewTicket,
    UserProfile,
)

logger = logging.getLogger(__name__)


class CoverLinkingService:
    def __init__(
        self,
        edi: EdiClient,
        profiles: ProfileRepository,
        events: EventStore,
        review_queue: ReviewQueue,
    ):
        self.edi = edi
        self.profiles = profiles
        self.events = events
        self.review_queue = review_queue

    def link_cover(
        self,
        phone_number: str,
        uid: str,
        push_tokens: list[str],
        *,
        deadline: Optional[Deadline] = None,
    ) -> Optional[requests.Response]:
        """
        Links the cover EDI's marketing data holds for `phone_number`.

        Returns the raw link-cover response, or None when EDI knows no cover
        for the number. A rejected link is not raised: it is turned into a
        review ticket and the caller inspects the response status.
        """
        try:
            records = fetch_slader_data(self.edi, phone_number, deadline=deadline)
        except CoverLinkingError as exc:
            raise with_context(
                exc, "failed to query the user's marketing details"
            ) from exc

        if not records:
            logger.info("No EDI membership found for %s", phone_number)
            return None

        # Only the first membership is linked. Users holding several covers
        # keep the rest unlinked until this is revisited.
        record = records[0]
        if len(records) > 1:
            logger.debug(
                "Ignoring %d additional memberships for %s",
                len(records) - 1,
                phone_number,
            )

        link_request = build_link_request(record, uid, push_tokens)
        response = self._attempt_link(phone_number, link_request, deadline)

        # Written on every path that gets here, including failures that
        # produced a review ticket. `link_edi_member_cover` never writes one.
        event = AuditEvent(
            member_number=record.member_number,
            phone_number=record.phone or phone_number,
        )
        try:
            self.events.save_cover_autolinking_event(
                event, timeout=timeout_for(deadline, "saving autolinking event")
            )
        except PersistenceError as exc:
            logger.error("failed to save coverlinking `completed` event: %s", exc)

        return response

    def link_edi_member_cover(
        self,
        phone_number: str,
        member_number: str,
        payer_slade_code: int,
        *,
        deadline: Optional[Deadline] = None,
    ) -> requests.Response:
        """
        Links a known member number/payer pair to the profile owning
        `phone_number`.

        Unlike `link_cover`, no autolinking event is recorded here.
        """
        profile = self._get_profile(phone_number, deadline)
        if not profile.verified_uids:
            raise ProfileLookupError(
                f"user profile for {phone_number} has no verified UID"
            )

        link_request = LinkRequest(
            payer_slade_code=payer_slade_code,
            member_number=member_number,
            uid=profile.verified_uids[0],
            push_token=list(profile.push_tokens),
        )
        return self._attempt_link(phone_number, link_request, deadline)

    def create_cover_linking_request(
        self,
        phone_number: str,
        member_number: str,
        payer_slade_code: int,
        error_message: str,
        *,
        deadline: Optional[Deadline] = None,
    ) -> ReviewTicket:
        """
        Records a cover-linking request for staff to review after automatic
        linking failed.
        """
        profile = self._get_profile(phone_number, deadline)
        ticket = ReviewTicket(
            payer_slade_code=payer_slade_code,
            member_number=member_number,
            phone_number=phone_number,
            error_message=error_message,
            first_name=profile.first_name,
            last_name=profile.last_name,
        )
        try:
            self.review_queue.save_cover_linking_notification(
                ticket, timeout=timeout_for(deadline, "saving cover linking request")
            )
        except PersistenceError as exc:
            raise PersistenceError(
                f"failed to save cover linking notification: {exc}"
            ) from exc

        # TODO: alert an admin once the engagement service exposes a staff
        # notification endpoint.
        logger.info(
            "Created cover linking request %s for %s (member %s)",
            ticket.id,
            phone_number,
            member_number,
        )
        return ticket

    def _get_profile(
        self, phone_number: str, deadline: Optional[Deadline]
    ) -> UserProfile:
        try:
            profile = self.profiles.get_user_profile_by_phone_number(
                phone_number,
                False,
                timeout=timeout_for(deadline, "user profile lookup"),
            )
        except PersistenceError as exc:
            raise ProfileLookupError(f"failed to fetch user profile: {exc}") from exc
        if profile is None:
            raise ProfileLookupError(
                f"failed to fetch user profile: no profile for {phone_number}"
            )
        return profile

    def _attempt_link(
        self,
        phone_number: str,
        link_request: LinkRequest,
        deadline: Optional[Deadline],
    ) -> requests.Response:
        response = post_link_request(self.edi, link_request, deadline=deadline)
        outcome = classify_link_response(response)

        if outcome.kind == OutcomeKind.LINKED:
            logger.info(
                "Linked cover %s for %s", link_request.member_number, phone_number
            )
        elif outcome.kind == OutcomeKind.ALREADY_LINKED:
            logger.info(
                "Cover %s already linked for %s",
                link_request.member_number,
                phone_number,
            )
        else:
            # Attempts are not deduplicated: concurrent failures for the same
            # phone number each create a ticket.
            logger.warning(
                "Cover linking failed for %s (member %s, status %s): %s",
                phone_number,
                link_request.member_number,
                response.status_code,
                outcome.message,
            )
            self.create_cover_linking_request(
                phone_number,
                link_request.member_number,
                link_request.payer_slade_code,
                outcome.message or "",
                deadline=deadline,
            )
        return response
