"""Subject (profile) attribute lookup used by condition steps and recipients."""

import logging
from typing import Any, Protocol
from uuid import UUID

import httpx

from mailflow.core.config import settings

logger = logging.getLogger(__name__)


class SubjectDirectory(Protocol):
    def get_attributes(self, profile_id: UUID) -> dict[str, Any]: ...


class StaticSubjectDirectory:
    """In-memory attributes keyed by profile id."""

    def __init__(self, attributes: dict[UUID, dict[str, Any]] | None = None):
        self.attributes = attributes or {}

    def get_attributes(self, profile_id: UUID) -> dict[str, Any]:
        return dict(self.attributes.get(profile_id, {}))


class HttpSubjectDirectory:
    """Fetch profile attributes from the profile service (GET /profiles/{id})."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def get_attributes(self, profile_id: UUID) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.get(f"{self.base_url}/profiles/{profile_id}", headers=headers)
        if response.status_code == 404:
            return {}
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, dict) else {}


def get_subject_directory() -> SubjectDirectory:
    if not settings.PROFILE_SERVICE_URL:
        logger.warning("PROFILE_SERVICE_URL not set; subject attributes will be empty")
        return StaticSubjectDirectory()
    return HttpSubjectDirectory(
        settings.PROFILE_SERVICE_URL, token=settings.PROFILE_SERVICE_TOKEN
    )
