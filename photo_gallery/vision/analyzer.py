from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from photo_gallery.core.errors import AiServiceError, InvalidRequestError
from photo_gallery.core.models import AiAnalysis

logger = logging.getLogger(__name__)


@dataclass
class AiConfig:
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    model: str = "gpt-4o"
    timeout: float = 60.0
    max_tokens: int = 500
    story_language: str = "Chinese"

    @classmethod
    def from_env(cls) -> "AiConfig":
        return cls(
            base_url=os.getenv("AI_API_BASE_URL") or None,
            api_key=os.getenv("AI_API_KEY") or None,
            model=os.getenv("AI_MODEL_NAME", "gpt-4o"),
            timeout=float(os.getenv("AI_HTTP_TIMEOUT", "60")),
            max_tokens=int(os.getenv("AI_MAX_TOKENS", "500")),
            story_language=os.getenv("AI_STORY_LANGUAGE", "Chinese"),
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)


_ANALYSIS_PROMPT = """
Analyze this image, focusing on any visible watermark text (often in corners)
or EXIF-like data overlaid on the image. Extract when available:
1. Camera model (e.g. "Leica Q2", "Sony A7M4")
2. Lens model (e.g. "75mm f/1.8", "24-70mm GM")
3. Shooting parameters (ISO, aperture, shutter speed)
4. Shooting time (date/time)
5. Location (if visible as text)

For "story", write one evocative sentence of about 30 words about the mood or
meaning the moment captures rather than describing the frame. Write it in
{language}.

If text is not visible, infer from the scene and prefer "Unknown" over a guess.

Return ONLY a JSON object with these keys:
{{
  "camera": "string or null",
  "lens": "string or null",
  "iso": "string or null",
  "aperture": "string or null",
  "shutter": "string or null",
  "takenAt": "ISO date string or null",
  "description": "string (brief scene description)",
  "story": "string",
  "location": "string or null"
}}
Do not wrap the JSON in markdown.
""".strip()


def strip_code_fences(text: str) -> str:
    """Remove an optional ```json ... ``` wrapper around a model reply."""
    text = text.strip()
    if text.startswith("```"):
        parts = text.split("\n", 1)
        text = parts[1] if len(parts) > 1 else ""
    if text.endswith("```"):
        text = text.rsplit("```", 1)[0]
    return text.strip()


def parse_analysis(content: str) -> AiAnalysis:
    text = strip_code_fences(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse AI response JSON: %s", content)
        raise AiServiceError("Invalid AI response format") from exc
    if not isinstance(parsed, dict):
        logger.error("AI response is not a JSON object: %s", content)
        raise AiServiceError("Invalid AI response format")
    try:
        return AiAnalysis.model_validate(parsed)
    except ValidationError as exc:
        raise AiServiceError("Invalid AI response format") from exc


class PhotoAnalyzer:
    """Client for an OpenAI-compatible chat completions endpoint with vision input."""

    def __init__(self, config: AiConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout)
        return self._client

    def _build_payload(self, image_b64: str) -> dict[str, Any]:
        prompt = _ANALYSIS_PROMPT.format(language=self.config.story_language)
        return {
            "model": self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                        },
                    ],
                }
            ],
            "max_tokens": self.config.max_tokens,
        }

    def analyze(self, image: bytes) -> AiAnalysis:
        if not self.config.configured:
            raise InvalidRequestError("AI configuration missing (AI_API_BASE_URL, AI_API_KEY)")

        image_b64 = base64.b64encode(image).decode("utf-8")
        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        try:
            response = self.client.post(
                url,
                json=self._build_payload(image_b64),
                headers={"Authorization": f"Bearer {self.config.api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_message(exc.response) or str(exc)
            logger.error("AI API call failed: %s", detail)
            raise AiServiceError(f"AI Service Error: {detail}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("AI API call failed: %s", exc)
            raise AiServiceError(f"AI Service Error: {exc}") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AiServiceError("AI Service Error: no message content in reply") from exc
        return parse_analysis(str(content or ""))


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return None
