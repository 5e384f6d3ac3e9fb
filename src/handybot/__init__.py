"""Top-level package for the HandyBot repair assistant."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .attachments import AttachmentStore
    from .client import CompletionClient
    from .config import ensure_config_dir, load_config
    from .controller import ConversationController
    from .credentials import FileSecretStore
    from .exceptions import (
        ConfigurationError,
        EncodingError,
        HandyBotError,
        InvalidResponseError,
        PersistenceError,
        ProviderError,
        SaveFailedError,
        SendFailedError,
        TransportError,
    )
    from .models import Attachment, AttachmentType, Message, Project
    from .project_store import JsonProjectStore
    from .service import ProjectService

_EXPORTS: dict[str, str] = {
    "Attachment": "models",
    "AttachmentStore": "attachments",
    "AttachmentType": "models",
    "CompletionClient": "client",
    "ConfigurationError": "exceptions",
    "ConversationController": "controller",
    "EncodingError": "exceptions",
    "FileSecretStore": "credentials",
    "HandyBotError": "exceptions",
    "InvalidResponseError": "exceptions",
    "JsonProjectStore": "project_store",
    "Message": "models",
    "PersistenceError": "exceptions",
    "Project": "models",
    "ProjectService": "service",
    "ProviderError": "exceptions",
    "SaveFailedError": "exceptions",
    "SendFailedError": "exceptions",
    "TransportError": "exceptions",
    "ensure_config_dir": "config",
    "load_config": "config",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import symbols so that importing the package stays cheap."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(f".{module_name}", __name__), name)
