"""Durable project collection backed by a single JSON document."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
import os
from pathlib import Path
from typing import Any, Protocol, TypeVar

from .exceptions import PersistenceError
from .models import Project, decode_projects, encode_projects

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class ProjectStore(Protocol):
    """Upsert-by-id persistence for projects."""

    async def save(self, project: Project) -> None: ...

    async def load_all(self) -> list[Project]: ...


class JsonProjectStore:
    """Manage the on-disk project collection.

    ``save`` is a read-modify-write of the whole document. Writes are
    serialized by an internal lock and land through a temporary file, so a
    reader never sees a half-written collection.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        """Set POSIX permissions on a file or directory; silently ignores failures."""
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            pass

    def _read(self) -> list[Project]:
        if not self.path.exists():
            return []
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Unable to read projects: {exc}") from exc
        return decode_projects(data)

    def _write(self, projects: list[Project]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._enforce_permissions(self.path.parent, 0o700)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_bytes(encode_projects(projects))
            self._enforce_permissions(tmp)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise PersistenceError(f"Unable to write projects: {exc}") from exc

    def _upsert(self, project: Project) -> None:
        projects = self._read()
        for index, existing in enumerate(projects):
            if existing.id == project.id:
                projects[index] = project
                break
        else:
            projects.append(project)
        self._write(projects)

    async def _run_locked(self, func: Callable[..., T], *args: Any) -> T:
        """Run blocking file work in a thread while holding the store lock.

        A worker thread cannot be interrupted, so cancellation waits for it to
        finish before the lock is released.
        """
        async with self._lock:
            work = asyncio.ensure_future(asyncio.to_thread(func, *args))
            try:
                return await asyncio.shield(work)
            except asyncio.CancelledError:
                await asyncio.wait([work])
                raise

    async def save(self, project: Project) -> None:
        """Insert or replace ``project`` by id."""
        # Copy before the first await; the caller keeps mutating its instance.
        snapshot = project.model_copy(deep=True)
        await self._run_locked(self._upsert, snapshot)
        LOGGER.info(
            "store.project.saved",
            extra={
                "event": "store.project.saved",
                "project_id": str(snapshot.id),
                "messages": len(snapshot.messages),
            },
        )

    async def load_all(self) -> list[Project]:
        """Return every stored project, most recently updated first."""
        projects = await self._run_locked(self._read)
        LOGGER.info(
            "store.projects.loaded",
            extra={"event": "store.projects.loaded", "count": len(projects)},
        )
        return sorted(projects, key=lambda item: item.last_updated, reverse=True)
