"""
Routes cover-linking messages to the service, whether they arrive as Pub/Sub
pushes or are popped off the worker queue.
"""

from __future__ import annotations

import logging
from typing import Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from coverlink.deadline import Deadline
from coverlink.exceptions import DecodeError, UnknownTopicError
from coverlink.queue import (
    LINK_COVER_TOPIC,
    LINK_EDI_MEMBER_COVER_TOPIC,
    CoverLinkMessage,
    add_namespace,
)
from coverlink.schemas import EDIMemberCoverPayload, LinkCoverPayload
from coverlink.service import CoverLinkingService

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def _parse(model: Type[T], data: dict) -> T:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise DecodeError(f"invalid {model.__name__}: {exc}") from exc


def handle_message(
    service: CoverLinkingService,
    message: CoverLinkMessage,
    *,
    namespace: Optional[str] = None,
    deadline: Optional[Deadline] = None,
) -> Optional[requests.Response]:
    """
    Runs the service operation for `message.topic` and returns its response.

    Raises:
        UnknownTopicError: The topic is not a cover-linking topic.
        DecodeError: The message data does not match the topic's payload.
        CoverLinkingError: Whatever the service operation raised.
    """
    logger.info("Handling %s message", message.topic)
    if message.topic == add_namespace(LINK_COVER_TOPIC, namespace):
        payload = _parse(LinkCoverPayload, message.data)
        return service.link_cover(
            payload.phone_number,
            payload.uid,
            payload.push_token,
            deadline=deadline,
        )

    if message.topic == add_namespace(LINK_EDI_MEMBER_COVER_TOPIC, namespace):
        payload = _parse(EDIMemberCoverPayload, message.data)
        return service.link_edi_member_cover(
            payload.phone_number,
            payload.member_number,
            payload.payer_slade_code,
            deadline=deadline,
        )

    raise UnknownTopicError(f"pub sub handler error: unknown topic `{message.topic}`")
