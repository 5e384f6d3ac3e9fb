"""Conversation entities and the on-disk codec for project collections."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum
import logging
from typing import Any
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from .exceptions import PersistenceFormatError

LOGGER = logging.getLogger(__name__)

PROJECTS_NAMESPACE = "handybot_projects"


def utcnow() -> datetime:
    return datetime.now(UTC)


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class AttachmentType(str, Enum):
    """Kinds of binary payloads a message may reference."""

    IMAGE = "image"


class Attachment(BaseModel):
    """Reference to a binary payload held by the attachment store."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    type: AttachmentType = AttachmentType.IMAGE
    filename: str
    local_path: str


class Message(BaseModel):
    """One immutable conversation turn."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    is_user: bool
    attachments: tuple[Attachment, ...] = ()

    @field_validator("content", mode="before")
    @classmethod
    def _normalize_content(cls, value: Any) -> Any:
        return _strip(value)

    @property
    def role(self) -> str:
        return "user" if self.is_user else "assistant"


class Project(BaseModel):
    """A repair conversation thread.

    Identity is ``id``: two projects compare equal (and hash equal) when
    their ids match, whatever their history looks like.
    """

    id: UUID = Field(default_factory=uuid4)
    title: str
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    messages: list[Message] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _normalize_title(cls, value: Any) -> Any:
        return _strip(value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Project):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def touch(self) -> None:
        """Advance ``last_updated``; never moves backwards, even on a coarse clock."""
        now = utcnow()
        if now <= self.last_updated:
            now = self.last_updated + timedelta(microseconds=1)
        self.last_updated = now

    def add_message(self, message: Message) -> None:
        self.messages.append(message)
        self.touch()
        LOGGER.debug(
            "project.message.added",
            extra={
                "event": "project.message.added",
                "project_id": str(self.id),
                "is_user": message.is_user,
                "attachments": len(message.attachments),
            },
        )

    def update_title(self, new_title: str) -> None:
        old_title = self.title
        self.title = new_title.strip()
        self.touch()
        LOGGER.info(
            "project.title.updated",
            extra={
                "event": "project.title.updated",
                "project_id": str(self.id),
                "old_title": old_title,
                "new_title": self.title,
            },
        )


_PROJECT_LIST = TypeAdapter(list[Project])


def encode_projects(projects: list[Project]) -> bytes:
    """Serialize a project collection under the fixed store namespace."""
    payload = {PROJECTS_NAMESPACE: _PROJECT_LIST.dump_python(projects, mode="json")}
    return TypeAdapter(dict[str, Any]).dump_json(payload, indent=2)


def decode_projects(data: bytes | str) -> list[Project]:
    """Decode a collection written by :func:`encode_projects`."""
    try:
        payload = TypeAdapter(dict[str, Any]).validate_json(data)
        return _PROJECT_LIST.validate_python(payload.get(PROJECTS_NAMESPACE, []))
    except ValidationError as exc:
        raise PersistenceFormatError(f"Project collection is invalid: {exc}") from exc
