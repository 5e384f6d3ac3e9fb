"""Secret storage for the completion provider credential."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

from .exceptions import SecretStoreError

LOGGER = logging.getLogger(__name__)

API_KEY_NAME = "claude_api_key"


class SecretStore(Protocol):
    """Opaque key-value store for secrets."""

    def get(self, name: str) -> str | None: ...

    def set(self, name: str, secret: str) -> None: ...

    def delete(self, name: str) -> None: ...


class FileSecretStore:
    """Keep secrets in a private JSON file readable only by the owner."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        """Set POSIX permissions on a file or directory; silently ignores failures."""
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            pass

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SecretStoreError(f"Unable to read secret store: {exc}") from exc
        if not isinstance(payload, dict):
            raise SecretStoreError("Secret store payload is invalid.")
        return {k: v for k, v in payload.items() if isinstance(v, str)}

    def _write(self, secrets: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._enforce_permissions(self.path.parent, 0o700)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(secrets, sort_keys=True), encoding="utf-8")
            self._enforce_permissions(tmp)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise SecretStoreError(f"Unable to write secret store: {exc}") from exc

    def get(self, name: str) -> str | None:
        value = self._read().get(name)
        if value is None:
            LOGGER.debug(
                "secrets.get.missing",
                extra={"event": "secrets.get.missing", "name": name},
            )
        return value

    def set(self, name: str, secret: str) -> None:
        secrets = self._read()
        secrets[name] = secret
        self._write(secrets)
        LOGGER.info("secrets.set", extra={"event": "secrets.set", "name": name})

    def delete(self, name: str) -> None:
        secrets = self._read()
        if secrets.pop(name, None) is None:
            return
        self._write(secrets)
        LOGGER.info("secrets.delete", extra={"event": "secrets.delete", "name": name})


class MemorySecretStore:
    """Process-local secret store, handy for tests and one-off sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(initial or {})

    def get(self, name: str) -> str | None:
        return self._secrets.get(name)

    def set(self, name: str, secret: str) -> None:
        self._secrets[name] = secret

    def delete(self, name: str) -> None:
        self._secrets.pop(name, None)
