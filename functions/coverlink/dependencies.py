"""
Dependency wiring for the FastAPI app and the worker.
"""

from __future__ import annotations

import firebase_admin
from firebase_admin import firestore

from coverlink.config import get_settings
from coverlink.db import FirestoreRepository, InMemoryRepository, PostgresRepository
from coverlink.edi import EdiClient, RequestsEdiClient
from coverlink.queue import InMemoryMessageQueue, MessageQueue, RedisMessageQueue
from coverlink.service import CoverLinkingService

Repository = InMemoryRepository | PostgresRepository | FirestoreRepository

_repository: Repository | None = None
_edi_client: EdiClient | None = None
_queue_client: MessageQueue | None = None
_service: CoverLinkingService | None = None


def _firestore_client(project_id: str):
    try:
        firebase_admin.get_app()
    except ValueError:
        firebase_admin.initialize_app(options={"projectId": project_id})
    return firestore.client()


def get_repository() -> Repository:
    """
    Return a singleton store for profiles, autolinking events and review
    tickets.
    """
    global _repository
    if _repository:
        return _repository

    settings = get_settings()
    if settings.use_in_memory_backends:
        _repository = InMemoryRepository()
    elif settings.database_url:
        _repository = PostgresRepository(settings.database_url)
    elif settings.firestore_project_id:
        _repository = FirestoreRepository(
            _firestore_client(settings.firestore_project_id),
            service_name=settings.service_name,
            environment=settings.environment,
        )
    else:
        _repository = InMemoryRepository()
    return _repository


def get_edi_client() -> EdiClient:
    global _edi_client
    if _edi_client:
        return _edi_client

    settings = get_settings()
    _edi_client = RequestsEdiClient(
        base_url=settings.edi_base_url,
        api_token=settings.edi_api_token,
        timeout=settings.edi_timeout_seconds,
    )
    return _edi_client


def get_queue_client() -> MessageQueue:
    """
    Return a singleton queue client for dispatching messages to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url:
        _queue_client = RedisMessageQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryMessageQueue()
    return _queue_client


def get_cover_linking_service() -> CoverLinkingService:
    global _service
    if _service:
        return _service

    repository = get_repository()
    _service = CoverLinkingService(
        edi=get_edi_client(),
        profiles=repository,
        events=repository,
        review_queue=repository,
    )
    return _service
