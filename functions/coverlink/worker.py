"""
Worker loop that drains queued cover-linking messages.

Each message is handled like a Pub/Sub push: the matching service operation
runs to completion. A message that failed because EDI was unreachable goes
back on the queue; any other failure is logged and dropped so the loop keeps
going.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from coverlink.config import get_settings
from coverlink.deadline import Deadline
from coverlink.dependencies import get_cover_linking_service, get_queue_client
from coverlink.exceptions import CoverLinkingError, TransportError
from coverlink.queue import MessageQueue
from coverlink.service import CoverLinkingService
from coverlink.subscriber import handle_message

logger = logging.getLogger(__name__)


def process_next(
    *,
    service: Optional[CoverLinkingService] = None,
    queue: Optional[MessageQueue] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Pop and handle one message. Returns True if a message was handled,
    whether or not linking succeeded.
    """
    service = service or get_cover_linking_service()
    queue = queue or get_queue_client()
    settings = get_settings()

    try:
        message = queue.dequeue(block=block, timeout=timeout)
    except CoverLinkingError as exc:
        logger.error("Dropping undecodable queued message: %s", exc)
        return True
    if message is None:
        return False

    try:
        response = handle_message(
            service,
            message,
            namespace=settings.pubsub_namespace,
            deadline=Deadline.after(settings.link_deadline_seconds),
        )
    except TransportError as exc:
        # EDI could not be reached: put the message back for a later attempt,
        # as Pub/Sub redelivers after the push endpoint's 400.
        logger.warning("[%s] Requeueing after transport error: %s", message.topic, exc)
        queue.enqueue(message)
        return True
    except CoverLinkingError as exc:
        # Decode, payer-code and profile errors fail the same way on every
        # attempt, so the message is dropped here rather than redelivered.
        logger.exception("[%s] Cover linking failed: %s", message.topic, exc)
        return True

    if response is None:
        logger.info("[%s] Nothing to link", message.topic)
    else:
        logger.info(
            "[%s] Cover link request finished with status %s",
            message.topic,
            response.status_code,
        )
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    service = get_cover_linking_service()
    queue = get_queue_client()
    while True:
        processed = process_next(
            service=service,
            queue=queue,
            block=True,
            timeout=int(poll_interval_seconds),
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
