"""Project lifecycle: creation, listing and per-project conversation control."""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID
import weakref

from .attachments import AttachmentStore
from .controller import CompletionBackend, ConversationController
from .credentials import API_KEY_NAME, SecretStore
from .models import Message, Project
from .project_store import ProjectStore

LOGGER = logging.getLogger(__name__)


class ProjectService:
    """Entry point for everything a front end does with projects.

    Every lookup of one project id yields the same live ``Project`` while
    anything still references it, and controllers for that project share one
    lock, so two sends on one conversation never interleave or overwrite each
    other. Both maps are weak: a project nobody holds is dropped.
    """

    def __init__(
        self,
        project_store: ProjectStore,
        attachment_store: AttachmentStore,
        client: CompletionBackend,
        secrets: SecretStore,
    ) -> None:
        self.project_store = project_store
        self.attachment_store = attachment_store
        self.client = client
        self.secrets = secrets
        self._projects: weakref.WeakValueDictionary[UUID, Project] = (
            weakref.WeakValueDictionary()
        )
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _track(self, project: Project) -> Project:
        """Return the live instance for ``project.id``, adopting ``project``."""
        live = self._projects.get(project.id)
        if live is None:
            self._projects[project.id] = project
            return project
        return live

    def _lock_for(self, project: Project) -> asyncio.Lock:
        lock = self._locks.get(project.id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project.id] = lock
        return lock

    async def create_project(self, title: str) -> Project:
        normalized = title.strip()
        if not normalized:
            raise ValueError("Project title must not be empty.")
        project = self._track(Project(title=normalized))
        await self.project_store.save(project)
        LOGGER.info(
            "service.project.created",
            extra={
                "event": "service.project.created",
                "project_id": str(project.id),
                "title": project.title,
            },
        )
        return project

    async def list_projects(self) -> list[Project]:
        """Return all projects, most recently updated first."""
        projects = [self._track(p) for p in await self.project_store.load_all()]
        return sorted(projects, key=lambda item: item.last_updated, reverse=True)

    async def get_project(self, project_id: UUID | str) -> Project | None:
        wanted = project_id if isinstance(project_id, UUID) else UUID(str(project_id))
        live = self._projects.get(wanted)
        if live is not None:
            return live
        for project in await self.project_store.load_all():
            if project.id == wanted:
                return self._track(project)
        return None

    def controller_for(self, project: Project) -> ConversationController:
        return ConversationController(
            self._track(project),
            self.client,
            self.project_store,
            self.attachment_store,
            lock=self._lock_for(project),
        )

    async def start_project(self, title: str) -> tuple[Project, Message | None]:
        """Create a project and send its title as the opening question."""
        project = await self.create_project(title)
        reply = await self.controller_for(project).send_message(project.title)
        return project, reply

    async def rename_project(self, project: Project, title: str) -> Project:
        """Retitle ``project`` and persist it; a failed save restores the old title."""
        normalized = title.strip()
        if not normalized:
            raise ValueError("Project title must not be empty.")
        live = self._track(project)
        async with self._lock_for(live):
            previous = (live.title, live.last_updated)
            live.update_title(normalized)
            try:
                await self.project_store.save(live)
            except BaseException:
                live.title, live.last_updated = previous
                raise
        return live

    def has_api_key(self) -> bool:
        return bool((self.secrets.get(API_KEY_NAME) or "").strip())

    def set_api_key(self, api_key: str) -> None:
        """Store ``api_key``; an empty value removes the stored key."""
        normalized = api_key.strip()
        if normalized:
            self.secrets.set(API_KEY_NAME, normalized)
        else:
            self.secrets.delete(API_KEY_NAME)
