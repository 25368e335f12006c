"""
Queue abstraction for cover-linking messages.

Messages carry one of the two cover-linking topics and its JSON data.
Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from coverlink.exceptions import DecodeError

# Topic for linking a cover inferred from the user's phone number.
LINK_COVER_TOPIC = "covers.link"

# Topic for linking a known member number/payer pair, published for sladers
# who followed the EDI text-message link and signed up.
LINK_EDI_MEMBER_COVER_TOPIC = "edi.covers.link"


def add_namespace(topic: str, namespace: Optional[str] = None) -> str:
    return f"{namespace}.{topic}" if namespace else topic


@dataclass(frozen=True)
class CoverLinkMessage:
    topic: str
    data: dict

    def dumps(self) -> str:
        return json.dumps({"topic": self.topic, "data": self.data})

    @classmethod
    def loads(cls, raw: str | bytes) -> "CoverLinkMessage":
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise DecodeError(f"unable to decode queued message: {exc}") from exc
        if (
            not isinstance(payload, dict)
            or not isinstance(payload.get("topic"), str)
            or not isinstance(payload.get("data"), dict)
        ):
            raise DecodeError("queued message must have a topic and object data")
        return cls(topic=payload["topic"], data=payload["data"])


class MessageQueue(Protocol):
    """Minimal queue interface for handing cover-linking messages to workers."""

    def enqueue(self, message: CoverLinkMessage) -> None:
        ...

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[CoverLinkMessage]:
        ...


@dataclass
class InMemoryMessageQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[str] = field(default_factory=list)

    def enqueue(self, message: CoverLinkMessage) -> None:
        self.items.append(message.dumps())

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[CoverLinkMessage]:
        if not self.items:
            return None
        return CoverLinkMessage.loads(self.items.pop(0))


@dataclass
class RedisMessageQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "coverlink:messages"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, message: CoverLinkMessage) -> None:
        self.client.rpush(self.queue_key, message.dumps())

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[CoverLinkMessage]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, raw = result
            else:
                raw = self.client.lpop(self.queue_key)
                if raw is None:
                    return None
        except redis_exceptions.ConnectionError:
            # Connection resets can happen on managed Redis. Treat as empty queue
            # and allow the worker loop to retry.
            self.client = redis.Redis.from_url(self.url)
            return None
        return CoverLinkMessage.loads(raw)
