"""Secondary vision-language model client used by the cascade."""

from __future__ import annotations

import asyncio
import base64
import json
import os
from typing import Any, Mapping, Protocol
from urllib import error, request
from urllib.parse import urlparse

from core.errors import DownstreamCallError
from core.logging import logger


ALLOWED_OUTBOUND_HOSTS = {"api.openai.com"}
ALLOWED_OUTBOUND_SCHEMES = {"https"}


def _validate_outbound_endpoint(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ALLOWED_OUTBOUND_SCHEMES:
        raise DownstreamCallError(
            f"Blocked outbound endpoint with non-TLS scheme: {parsed.scheme or 'missing'}"
        )
    if not parsed.hostname:
        raise DownstreamCallError("Blocked outbound endpoint with missing hostname.")
    if parsed.hostname not in ALLOWED_OUTBOUND_HOSTS:
        raise DownstreamCallError(f"Blocked outbound endpoint to untrusted host: {parsed.hostname}")
    if parsed.username or parsed.password:
        raise DownstreamCallError("Blocked outbound endpoint with embedded credentials.")


class VisionClient(Protocol):
    """Anything that can explain an annotated image."""

    @property
    def model(self) -> str: ...

    async def analyze(self, prompt: str, image: bytes, mime_type: str) -> str: ...


class OpenAIVisionClient:
    """Chat Completions client sending one prompt plus one image."""

    def __init__(
        self,
        *,
        model: str = "gpt-4o-2024-05-13",
        detail: str = "auto",
        max_tokens: int = 300,
        timeout_s: float = 30.0,
        endpoint: str = "https://api.openai.com/v1/chat/completions",
        api_key: str | None = None,
    ) -> None:
        self._model = model
        self._detail = detail
        self._max_tokens = max(1, int(max_tokens))
        self._timeout_s = max(1.0, float(timeout_s))
        self._endpoint = endpoint
        self._api_key = (api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")).strip()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "OpenAIVisionClient":
        downstream_cfg = config.get("downstream") or {}
        return cls(
            model=str(downstream_cfg.get("model", "gpt-4o-2024-05-13")),
            detail=str(downstream_cfg.get("detail", "auto")),
            max_tokens=int(downstream_cfg.get("max_tokens", 300)),
            timeout_s=float(downstream_cfg.get("timeout_s", 30.0)),
            endpoint=str(downstream_cfg.get("endpoint", "https://api.openai.com/v1/chat/completions")),
        )

    @property
    def model(self) -> str:
        return self._model

    async def analyze(self, prompt: str, image: bytes, mime_type: str) -> str:
        """Ask the model to explain ``image``.

        Raises:
            DownstreamCallError: Missing key, transport failure or a response
                that is not a single assistant message with text content.
        """

        if not self._api_key:
            raise DownstreamCallError("OPENAI_API_KEY not set")
        _validate_outbound_endpoint(self._endpoint)
        payload = self._build_payload(prompt, image, mime_type)
        response_payload = await asyncio.to_thread(self._chat_completions_call, payload)
        return self._extract_content(response_payload)

    def _build_payload(self, prompt: str, image: bytes, mime_type: str) -> dict[str, Any]:
        encoded = base64.b64encode(image).decode("ascii")
        return {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{mime_type};base64,{encoded}",
                                "detail": self._detail,
                            },
                        },
                    ],
                }
            ],
        }

    def _chat_completions_call(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = json.dumps(payload).encode("utf-8")
        req = request.Request(
            self._endpoint,
            data=data,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self._timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raise DownstreamCallError(f"HTTP {exc.code} from {self._endpoint}") from exc
        except (error.URLError, OSError) as exc:
            raise DownstreamCallError(f"Request to {self._endpoint} failed: {exc}") from exc
        try:
            response_payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise DownstreamCallError("Non-JSON response from vision model") from exc
        if not isinstance(response_payload, dict):
            raise DownstreamCallError("Vision model response is not an object")
        return response_payload

    def _extract_content(self, response_payload: dict[str, Any]) -> str:
        choices = response_payload.get("choices")
        if not isinstance(choices, list) or len(choices) != 1:
            raise DownstreamCallError(
                f"Expected choices to have 1 item ({_clip(json.dumps(response_payload))})"
            )
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        if not isinstance(message, dict):
            message = {}
        if message.get("role") != "assistant":
            raise DownstreamCallError(
                f'Expected choices[0].message.role to equal "assistant" ({_clip(json.dumps(response_payload))})'
            )
        content = message.get("content")
        if not isinstance(content, str):
            raise DownstreamCallError(
                f"Expected choices[0].message.content to be a string ({_clip(json.dumps(response_payload))})"
            )
        logger.debug("[VLM] %s replied with %d chars", self._model, len(content))
        return content.strip()


def _clip(text: str, limit: int = 300) -> str:
    return text if len(text) <= limit else f"{text[:limit]}…"
