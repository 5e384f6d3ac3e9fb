"""Async client for the Anthropic Messages API.

Turns a project's message history plus the new user input into one
multi-modal completion request, executes it, and maps every failure onto
the domain exception hierarchy.
"""

from __future__ import annotations

import base64
from collections.abc import Sequence
from dataclasses import dataclass
import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from .attachments import (
    DEFAULT_JPEG_QUALITY,
    AttachmentStore,
    ImageInput,
    encode_jpeg,
)
from .credentials import API_KEY_NAME, SecretStore
from .exceptions import (
    ConfigurationError,
    InvalidResponseError,
    ProviderError,
    TransportError,
)
from .logging_utils import redact_secret
from .models import AttachmentType, Message

LOGGER = logging.getLogger(__name__)

PROVIDER_NAME = "Claude"
DEFAULT_ENDPOINT = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
API_KEY_HEADER = "x-api-key"
SENSITIVE_RESPONSE_HEADERS = frozenset({"authorization", "set-cookie"})

SYSTEM_PROMPT = (
    "You are a helpful assistant specializing in home repairs and DIY projects. "
    "Analyze any images provided and give clear, safe advice for fixing issues. "
    "If you're unsure about safety implications, "
    "always recommend consulting a professional. "
    "When giving advice:\n"
    "1. Start with safety considerations\n"
    "2. List required tools and materials\n"
    "3. Provide step-by-step instructions\n"
    "4. Mention common pitfalls to avoid\n"
    "5. Suggest when to call a professional"
)


class ContentBlock(BaseModel):
    type: str
    text: str


class Usage(BaseModel):
    input_tokens: int
    output_tokens: int


class CompletionResponse(BaseModel):
    """Successful Messages API reply."""

    id: str
    type: str
    role: str
    model: str
    content: list[ContentBlock]
    usage: Usage
    stop_reason: str | None = None
    stop_sequence: str | None = None


class ErrorDetail(BaseModel):
    type: str
    message: str
    status_code: int | None = None


class ErrorResponse(BaseModel):
    """Body of a non-2xx Messages API reply."""

    type: str
    error: ErrorDetail


def image_block(jpeg_bytes: bytes) -> dict[str, Any]:
    """Wrap JPEG bytes as a base64 image content block."""
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": "image/jpeg",
            "data": base64.b64encode(jpeg_bytes).decode("ascii"),
        },
    }


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


@dataclass
class CompletionRequest:
    """A fully built request, ready to be POSTed."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any]

    @property
    def content(self) -> bytes:
        return json.dumps(self.body, ensure_ascii=False).encode("utf-8")

    def redacted(self) -> str:
        """Render the request for debug output with the credential masked."""
        secret = self.headers.get(API_KEY_HEADER)
        lines = [f"POST {self.url}"]
        for key, value in self.headers.items():
            lines.append(f"{key}: {redact_secret(value, secret)}")
        lines.append("")
        lines.append(redact_secret(self.content.decode("utf-8"), secret))
        return "\n".join(lines)


class CompletionClient:
    """Send one conversation turn to the completion endpoint."""

    def __init__(
        self,
        secrets: SecretStore,
        attachments: AttachmentStore,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        api_version: str = DEFAULT_API_VERSION,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        system_prompt: str = SYSTEM_PROMPT,
        jpeg_quality: float = DEFAULT_JPEG_QUALITY,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.secrets = secrets
        self.attachments = attachments
        self.endpoint = endpoint
        self.model = model
        self.api_version = api_version
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.system_prompt = system_prompt
        self.jpeg_quality = jpeg_quality
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        LOGGER.info(
            "client.initialized",
            extra={
                "event": "client.initialized",
                "endpoint": endpoint,
                "model": model,
            },
        )

    @classmethod
    def from_config(
        cls,
        config: dict[str, dict[str, Any]],
        secrets: SecretStore,
        attachments: AttachmentStore,
        http_client: httpx.AsyncClient | None = None,
    ) -> CompletionClient:
        """Build a client from the ``[anthropic]`` and ``[storage]`` sections."""
        section = config.get("anthropic", {})
        storage = config.get("storage", {})
        return cls(
            secrets,
            attachments,
            endpoint=str(section.get("endpoint", DEFAULT_ENDPOINT)),
            model=str(section.get("model", DEFAULT_MODEL)),
            api_version=str(section.get("api_version", DEFAULT_API_VERSION)),
            max_tokens=int(section.get("max_tokens", DEFAULT_MAX_TOKENS)),
            temperature=float(section.get("temperature", DEFAULT_TEMPERATURE)),
            jpeg_quality=float(storage.get("jpeg_quality", DEFAULT_JPEG_QUALITY)),
            timeout=section.get("timeout_seconds"),
            http_client=http_client,
        )

    async def __aenter__(self) -> CompletionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client when this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()

    def _api_key(self) -> str:
        api_key = (self.secrets.get(API_KEY_NAME) or "").strip()
        if not api_key:
            LOGGER.error(
                "client.api_key.missing", extra={"event": "client.api_key.missing"}
            )
            raise ConfigurationError(f"Please set your {PROVIDER_NAME} API key.")
        return api_key

    def _history_turn(self, message: Message) -> dict[str, Any] | None:
        if not message.attachments:
            return {"role": message.role, "content": message.content}

        content: list[dict[str, Any]] = []
        if message.content:
            content.append(text_block(message.content))
        for attachment in message.attachments:
            if attachment.type is not AttachmentType.IMAGE:
                continue
            data = self.attachments.load(attachment)
            if data is None:
                LOGGER.warning(
                    "client.attachment.skipped",
                    extra={
                        "event": "client.attachment.skipped",
                        "attachment_id": str(attachment.id),
                    },
                )
                continue
            content.append(image_block(data))
        if not content:
            # Image-only turn whose images are all gone.
            LOGGER.warning(
                "client.turn.skipped",
                extra={"event": "client.turn.skipped", "message_id": str(message.id)},
            )
            return None
        return {"role": message.role, "content": content}

    def build_messages(
        self,
        context: Sequence[Message],
        text: str,
        images: Sequence[ImageInput] = (),
    ) -> list[dict[str, Any]]:
        """Build the ``messages`` array for a request.

        The last context message is dropped when its content equals ``text``:
        the caller has usually appended the turn being sent already, and it is
        re-encoded below together with its images.

        Raises:
            EncodingError: one of ``images`` could not be encoded.
        """
        history = list(context)
        if history and history[-1].content == text:
            history = history[:-1]

        turns = [
            turn
            for turn in (self._history_turn(message) for message in history)
            if turn is not None
        ]

        # The API rejects empty text blocks; image-only turns carry images alone.
        current: list[dict[str, Any]] = [text_block(text)] if text or not images else []
        for image in images:
            current.append(image_block(encode_jpeg(image, self.jpeg_quality)))
        turns.append({"role": "user", "content": current})
        return turns

    def build_request(
        self,
        context: Sequence[Message],
        text: str,
        images: Sequence[ImageInput],
        api_key: str,
    ) -> CompletionRequest:
        """Assemble URL, headers and body for one completion call."""
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self.build_messages(context, text, images),
            "temperature": self.temperature,
            "system": self.system_prompt,
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            API_KEY_HEADER: api_key,
            "anthropic-version": self.api_version,
        }
        return CompletionRequest(url=self.endpoint, headers=headers, body=body)

    async def send_message(
        self,
        text: str,
        images: Sequence[ImageInput] = (),
        context: Sequence[Message] = (),
    ) -> str:
        """Continue the conversation in ``context`` and return the reply text.

        Raises:
            ConfigurationError: no credential is stored.
            EncodingError: a new image could not be encoded; nothing was sent.
            TransportError: the endpoint could not be reached.
            ProviderError: the endpoint answered with a non-2xx status.
            InvalidResponseError: a 2xx body did not match the expected schema.
        """
        LOGGER.info(
            "client.request.start",
            extra={
                "event": "client.request.start",
                "images": len(images),
                "context_messages": len(context),
            },
        )
        api_key = self._api_key()
        request = self.build_request(context, text, images, api_key)
        LOGGER.debug("client.request.body\n%s", request.redacted())

        try:
            response = await self._http.post(
                request.url, headers=request.headers, content=request.content
            )
        except httpx.HTTPError as exc:
            LOGGER.error(
                "client.request.transport_error",
                extra={
                    "event": "client.request.transport_error",
                    "error_type": exc.__class__.__name__,
                },
            )
            raise TransportError(
                f"Unable to reach {self.endpoint}: {exc.__class__.__name__}"
            ) from exc

        safe_headers = {
            key: value
            for key, value in response.headers.items()
            if key.lower() not in SENSITIVE_RESPONSE_HEADERS
        }
        LOGGER.debug("client.response.headers %s", safe_headers)
        LOGGER.debug("client.response.body %s", response.text)

        if not response.is_success:
            raise self._error_from_response(response)
        return self._parse_reply(response)

    def _error_from_response(self, response: httpx.Response) -> ProviderError:
        status = response.status_code
        LOGGER.error(
            "client.response.error",
            extra={"event": "client.response.error", "status_code": status},
        )
        try:
            parsed = ErrorResponse.model_validate_json(response.content)
        except ValidationError:
            LOGGER.error("client.response.error.raw %s", response.text)
            return ProviderError(f"API request failed with status {status}", status)
        message = (
            f"{PROVIDER_NAME} API error ({parsed.error.type}): {parsed.error.message}"
        )
        return ProviderError(message, status)

    def _parse_reply(self, response: httpx.Response) -> str:
        try:
            parsed = CompletionResponse.model_validate_json(response.content)
        except ValidationError as exc:
            LOGGER.error(
                "client.response.invalid",
                extra={"event": "client.response.invalid", "error": str(exc)},
            )
            raise InvalidResponseError(
                f"{PROVIDER_NAME} API returned an unexpected response."
            ) from exc
        if not parsed.content:
            LOGGER.error(
                "client.response.empty", extra={"event": "client.response.empty"}
            )
            raise InvalidResponseError(f"{PROVIDER_NAME} API returned no content.")

        reply = parsed.content[0].text
        LOGGER.info(
            "client.response.success",
            extra={
                "event": "client.response.success",
                "input_tokens": parsed.usage.input_tokens,
                "output_tokens": parsed.usage.output_tokens,
                "stop_reason": parsed.stop_reason or "unknown",
                "reply_chars": len(reply),
            },
        )
        return reply
