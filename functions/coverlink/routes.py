"""
HTTP routes for the cover-linking service.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging

from fastapi import APIRouter, Depends, HTTPException

from coverlink.config import get_settings
from coverlink.deadline import Deadline
from coverlink.dependencies import get_cover_linking_service, get_queue_client
from coverlink.exceptions import CoverLinkingError
from coverlink.queue import (
    LINK_COVER_TOPIC,
    LINK_EDI_MEMBER_COVER_TOPIC,
    CoverLinkMessage,
    MessageQueue,
    add_namespace,
)
from coverlink.schemas import (
    EDIMemberCoverPayload,
    EnqueueResponse,
    LinkCoverPayload,
    PubSubEnvelope,
    StatusResponse,
)
from coverlink.service import CoverLinkingService
from coverlink.subscriber import handle_message

logger = logging.getLogger(__name__)

router = APIRouter()

# Pub/Sub push attribute naming the topic a message was published to.
TOPIC_ATTRIBUTE = "topicID"


def _enqueue(queue: MessageQueue, topic: str, data: dict) -> EnqueueResponse:
    namespaced = add_namespace(topic, get_settings().pubsub_namespace)
    queue.enqueue(CoverLinkMessage(topic=namespaced, data=data))
    return EnqueueResponse(topic=namespaced, status="queued")


@router.get("/health", response_model=StatusResponse)
def health():
    return StatusResponse(status="ok")


@router.post("/covers/link", response_model=EnqueueResponse, status_code=202)
def request_cover_linking(
    payload: LinkCoverPayload,
    queue: MessageQueue = Depends(get_queue_client),
):
    """
    Queue linking of whichever cover EDI holds for the phone number.
    """
    return _enqueue(queue, LINK_COVER_TOPIC, payload.model_dump(by_alias=True))


@router.post(
    "/covers/link_edi_member", response_model=EnqueueResponse, status_code=202
)
def request_edi_member_cover_linking(
    payload: EDIMemberCoverPayload,
    queue: MessageQueue = Depends(get_queue_client),
):
    return _enqueue(
        queue, LINK_EDI_MEMBER_COVER_TOPIC, payload.model_dump(by_alias=True)
    )


@router.post("/pubsub", response_model=StatusResponse)
def receive_pubsub_push(
    envelope: PubSubEnvelope,
    service: CoverLinkingService = Depends(get_cover_linking_service),
):
    """
    Pub/Sub push endpoint. The linking runs synchronously; any error answers
    400 so the message is redelivered.
    """
    topic = envelope.message.attributes.get(TOPIC_ATTRIBUTE)
    if not topic:
        raise HTTPException(status_code=400, detail="message has no topic")

    try:
        data = json.loads(base64.b64decode(envelope.message.data, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(
            status_code=400, detail=f"unable to decode message data: {exc}"
        )
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="message data must be an object")

    settings = get_settings()
    try:
        handle_message(
            service,
            CoverLinkMessage(topic=topic, data=data),
            namespace=settings.pubsub_namespace,
            deadline=Deadline.after(settings.link_deadline_seconds),
        )
    except CoverLinkingError as exc:
        logger.warning("Pub/Sub message on %s failed: %s", topic, exc)
        raise HTTPException(status_code=400, detail=str(exc))

    return StatusResponse(status="success")
