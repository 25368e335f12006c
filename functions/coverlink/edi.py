"""
EDI inter-service client plus the pieces of a link attempt that talk to it:
membership lookup, link request building and response classification.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol
from urllib.parse import urlencode

import requests

from coverlink.deadline import Deadline, timeout_for
from coverlink.exceptions import (
    DecodeError,
    InvalidSladeCodeError,
    TransportError,
    UpstreamStatusError,
    with_context,
)
from coverlink.types import (
    COVER_ALREADY_EXISTS,
    LinkOutcome,
    LinkRequest,
    MembershipRecord,
)

logger = logging.getLogger(__name__)

LINK_COVER_ENDPOINT = "internal/link_cover"
SLADER_DATA_ENDPOINT = "internal/slader_data"

REQUEST_TIMEOUT = 30  # seconds

# ASCII digits with an optional sign, nothing else.
_SLADE_CODE = re.compile(r"[+-]?[0-9]+")


class EdiClient(Protocol):
    """Minimal interface for calling the EDI service."""

    def make_request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        *,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        ...


@dataclass
class RequestsEdiClient:
    """
    `requests`-backed EDI client.

    Any response, whatever its status, is returned as-is. Only a call that
    could not be completed raises, as TransportError.
    """

    base_url: str
    api_token: Optional[str] = None
    timeout: float = REQUEST_TIMEOUT
    session: requests.Session = field(default_factory=requests.Session)

    def __post_init__(self):
        self.session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        if self.api_token:
            self.session.headers["Authorization"] = f"Bearer {self.api_token}"

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def make_request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        *,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        effective_timeout = (
            self.timeout if timeout is None else min(timeout, self.timeout)
        )
        try:
            return self.session.request(
                method,
                self._url(path),
                json=payload,
                timeout=effective_timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(
                f"{method} {path} could not be completed: {exc}"
            ) from exc


def _text_field(item: dict, key: str) -> str:
    value = item.get(key, "")
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise DecodeError(f"failed to unmarshal slader data: bad `{key}`")
    return str(value)


def fetch_slader_data(
    client: EdiClient,
    phone_number: str,
    *,
    deadline: Optional[Deadline] = None,
) -> list[MembershipRecord]:
    """
    Fetches the covers the legacy marketing data holds for a phone number.

    Returns an empty list when EDI knows no memberships for the number.

    Raises:
        TransportError: The request could not be made.
        UpstreamStatusError: EDI answered with a non-200 status.
        DecodeError: The body is not a JSON array of membership objects.
    """
    path = f"{SLADER_DATA_ENDPOINT}?{urlencode({'phoneNumber': phone_number})}"
    try:
        response = client.make_request(
            "GET", path, None, timeout=timeout_for(deadline, "slader data lookup")
        )
    except TransportError as exc:
        raise with_context(exc, "failed to get slader data") from exc

    if response.status_code != 200:
        raise UpstreamStatusError(
            f"unable to get data, with status code {response.status_code}",
            status_code=response.status_code,
        )

    try:
        data: Any = response.json()
    except ValueError as exc:
        raise DecodeError(f"failed to unmarshal slader data: {exc}") from exc

    if data is None:
        return []
    if not isinstance(data, list) or not all(isinstance(i, dict) for i in data):
        raise DecodeError("failed to unmarshal slader data: expected a JSON array")

    return [
        MembershipRecord(
            phone=_text_field(item, "phone"),
            payer_slade_code=_text_field(item, "payerSladeCode"),
            member_number=_text_field(item, "memberNumber"),
        )
        for item in data
    ]


def build_link_request(
    record: MembershipRecord, uid: str, push_tokens: list[str]
) -> LinkRequest:
    code = record.payer_slade_code
    if not isinstance(code, str) or not _SLADE_CODE.fullmatch(code):
        raise InvalidSladeCodeError(
            f"failed to convert slade code to an int: {code!r}"
        )
    slade_code = int(code)
    return LinkRequest(
        payer_slade_code=slade_code,
        member_number=record.member_number,
        uid=uid,
        push_token=list(push_tokens or []),
    )


def post_link_request(
    client: EdiClient,
    link_request: LinkRequest,
    *,
    deadline: Optional[Deadline] = None,
) -> requests.Response:
    try:
        return client.make_request(
            "POST",
            LINK_COVER_ENDPOINT,
            link_request.as_payload(),
            timeout=timeout_for(deadline, "cover link request"),
        )
    except TransportError as exc:
        raise with_context(
            exc, "failed to make an edi request for coverlinking"
        ) from exc


def classify_link_response(response: requests.Response) -> LinkOutcome:
    """
    Maps a link-cover response onto Linked, AlreadyLinked or Failed.

    Any non-200 response must carry a JSON object with a string "error";
    anything else raises DecodeError.
    """
    if response.status_code == 200:
        return LinkOutcome.linked()

    try:
        data: Any = response.json()
    except ValueError as exc:
        raise DecodeError("bad data returned") from exc

    if not isinstance(data, dict) or "error" not in data:
        raise DecodeError(
            f"bad data returned: no error message with status {response.status_code}"
        )
    message = data["error"]
    if not isinstance(message, str):
        raise DecodeError("bad data returned: error message is not a string")

    if COVER_ALREADY_EXISTS in message:
        return LinkOutcome.already_linked(message)
    return LinkOutcome.failed(message)
