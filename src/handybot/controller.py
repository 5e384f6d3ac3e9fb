"""Send-message protocol for one repair project.

A send is staged: store the images, append the user turn, persist, ask the
completion endpoint, append the reply, persist again. Any failure puts the
in-memory conversation back exactly as it was before the send started, so
callers see an all-or-nothing update.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Protocol

from .attachments import AttachmentStore, ImageInput
from .exceptions import HandyBotError, SaveFailedError, SendFailedError
from .models import Attachment, Message, Project
from .project_store import ProjectStore

LOGGER = logging.getLogger(__name__)


class CompletionBackend(Protocol):
    """Anything that can answer one conversation turn."""

    async def send_message(
        self,
        text: str,
        images: Sequence[ImageInput] = (),
        context: Sequence[Message] = (),
    ) -> str: ...


@dataclass(frozen=True)
class _Checkpoint:
    message_count: int
    last_updated: datetime


class ConversationController:
    """Drive message exchanges for a single project."""

    def __init__(
        self,
        project: Project,
        client: CompletionBackend,
        project_store: ProjectStore,
        attachment_store: AttachmentStore,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self.project = project
        self.client = client
        self.project_store = project_store
        self.attachment_store = attachment_store
        self._lock = lock or asyncio.Lock()

    @property
    def messages(self) -> list[Message]:
        return list(self.project.messages)

    async def send_message(
        self, text: str, images: Sequence[ImageInput] = ()
    ) -> Message | None:
        """Send ``text`` and ``images`` and record the assistant's reply.

        Returns the assistant message, or ``None`` when the input was empty
        or repeats the last message verbatim (both are silent no-ops).

        Raises:
            SaveFailedError: the project could not be persisted.
            SendFailedError: the images could not be stored or the completion
                call failed.
        """
        async with self._lock:
            return await self._send_locked(text, images)

    async def _send_locked(
        self, text: str, images: Sequence[ImageInput]
    ) -> Message | None:
        trimmed = text.strip()
        if not trimmed and not images:
            return None
        last = self.project.last_message
        # Best effort: a user who really repeats themselves is suppressed too.
        # Image-only sends carry no text to compare.
        if trimmed and last is not None and last.content == trimmed:
            LOGGER.debug(
                "conversation.send.duplicate",
                extra={
                    "event": "conversation.send.duplicate",
                    "project_id": str(self.project.id),
                },
            )
            return None

        LOGGER.info(
            "conversation.send.start",
            extra={
                "event": "conversation.send.start",
                "project_id": str(self.project.id),
                "images": len(images),
            },
        )
        checkpoint = _Checkpoint(len(self.project.messages), self.project.last_updated)

        attachments: list[Attachment] = []
        try:
            for image in images:
                attachments.append(await self.attachment_store.store(image))
        except HandyBotError as exc:
            self._discard(attachments)
            raise SendFailedError(exc) from exc

        self.project.add_message(
            Message(content=trimmed, is_user=True, attachments=tuple(attachments))
        )

        try:
            await self.project_store.save(self.project)
        except asyncio.CancelledError:
            await self._rollback(checkpoint, attachments, compensate=True)
            raise
        except Exception as exc:  # noqa: BLE001 - any store failure rolls back.
            await self._rollback(checkpoint, attachments, compensate=False)
            LOGGER.error(
                "conversation.save.user_failed",
                extra={"event": "conversation.save.user_failed", "error": str(exc)},
            )
            raise SaveFailedError(exc) from exc

        try:
            reply = await self.client.send_message(
                trimmed, images, context=list(self.project.messages)
            )
        except asyncio.CancelledError:
            await self._rollback(checkpoint, attachments, compensate=True)
            raise
        except Exception as exc:  # noqa: BLE001 - external API can fail in many ways.
            await self._rollback(checkpoint, attachments, compensate=True)
            LOGGER.error(
                "conversation.completion.failed",
                extra={
                    "event": "conversation.completion.failed",
                    "error_type": exc.__class__.__name__,
                    "error": str(exc),
                },
            )
            raise SendFailedError(exc) from exc

        assistant_message = Message(content=reply, is_user=False)
        self.project.add_message(assistant_message)

        try:
            await self.project_store.save(self.project)
        except asyncio.CancelledError:
            await self._rollback(checkpoint, attachments, compensate=True)
            raise
        except Exception as exc:  # noqa: BLE001 - any store failure rolls back.
            await self._rollback(checkpoint, attachments, compensate=True)
            LOGGER.error(
                "conversation.save.assistant_failed",
                extra={
                    "event": "conversation.save.assistant_failed",
                    "error": str(exc),
                },
            )
            raise SaveFailedError(exc) from exc

        LOGGER.info(
            "conversation.send.complete",
            extra={
                "event": "conversation.send.complete",
                "project_id": str(self.project.id),
                "messages": len(self.project.messages),
            },
        )
        return assistant_message

    async def _rollback(
        self,
        checkpoint: _Checkpoint,
        attachments: list[Attachment],
        *,
        compensate: bool,
    ) -> None:
        """Restore the pre-send conversation, optionally re-persisting it."""
        removed = len(self.project.messages) - checkpoint.message_count
        del self.project.messages[checkpoint.message_count :]
        self.project.last_updated = checkpoint.last_updated
        LOGGER.warning(
            "conversation.rollback",
            extra={
                "event": "conversation.rollback",
                "project_id": str(self.project.id),
                "removed_messages": removed,
            },
        )

        restored = True
        if compensate:
            try:
                await self.project_store.save(self.project)
            except Exception as exc:  # noqa: BLE001 - compensation is best effort.
                restored = False
                LOGGER.warning(
                    "conversation.rollback.save_failed",
                    extra={
                        "event": "conversation.rollback.save_failed",
                        "error": str(exc),
                    },
                )
        # A stale stored copy may still point at these files.
        if restored:
            self._discard(attachments)

    def _discard(self, attachments: list[Attachment]) -> None:
        for attachment in attachments:
            self.attachment_store.discard(attachment)
