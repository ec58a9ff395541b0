"""Tag generation client for uploaded files.

Calls a Gemini ``generateContent`` endpoint with the file's metadata (and
optionally a text preview or an inline image) and turns the reply into at
most eight short lowercase tags.

``TagGenerator.generate`` never raises for service problems: a missing API
key, a network error, a non-2xx status or an unparseable reply all yield an
empty list and a log line.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass

import httpx

from chunkdrive import metrics
from chunkdrive.config import EnrichmentConfig

logger = logging.getLogger(__name__)

MAX_TAGS = 8
_MAX_PREVIEW_CHARS = 5000

_DISALLOWED_RE = re.compile(r"[^a-z0-9\s\-]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TagInput:
    """Everything the tagging service is told about one file."""

    name: str
    type: str
    extension: str
    content_type: str | None = None
    size: int = 0
    preview_text: str | None = None
    image_base64: str | None = None


def build_prompt(info: TagInput) -> str:
    return (
        "You are a tagging assistant for a cloud drive app.\n"
        "Given a file's name, extension, type category, and content-type, "
        f"return up to {MAX_TAGS} short, relevant tags.\n"
        "- Output strictly as a JSON array of strings. No commentary.\n"
        "- Prefer general-purpose, safe tags users would use to search "
        '(e.g., "music", "lecture", "invoice", "vacation", "mp4", "spreadsheet").\n'
        "- Use lowercase, kebab or space separated, max 2 words per tag.\n"
        "- Avoid duplicates and special characters.\n"
        "\n"
        "File info:\n"
        f"- name: {info.name}\n"
        f"- extension: {info.extension}\n"
        f"- type: {info.type}\n"
        f"- contentType: {info.content_type or 'unknown'}\n"
        f"- sizeBytes: {info.size or 0}\n"
    )


def normalize_tags(raw: list) -> list[str]:
    """Lowercase, strip to ``[a-z0-9-]``, dedupe (keeping order), cap at eight.

    Inner whitespace becomes a single hyphen, so "sales report" turns into
    "sales-report".
    """
    seen: dict[str, None] = {}
    for item in raw:
        tag = _DISALLOWED_RE.sub("", str(item).lower()).strip()
        tag = _WHITESPACE_RE.sub("-", tag).strip("-")
        if tag:
            seen.setdefault(tag, None)
    return list(seen)[:MAX_TAGS]


def parse_tags(text: str) -> list[str]:
    """Extract tags from the model's reply text.

    The reply should be a JSON array. When it is not (prose around the
    array, single quotes, a bare list), fall back to splitting the bracketed
    part on commas and newlines.
    """
    tags: list | None = None
    try:
        parsed = json.loads(text)
        if isinstance(parsed, list):
            tags = parsed
    except (json.JSONDecodeError, TypeError):
        pass

    if tags is None:
        body = str(text)
        if "[" in body:
            body = body[body.index("[") + 1:]
        if "]" in body:
            body = body[: body.rindex("]")]
        body = body.replace('"', "").replace("'", "")
        tags = [s.strip() for s in re.split(r"[\n,]", body) if s.strip()]

    return normalize_tags(tags)


class TagGenerator:
    """Client for the tag-generation service.

    The underlying ``httpx.AsyncClient`` is created on first use; concurrent
    first calls share one client.
    """

    def __init__(
        self,
        config: EnrichmentConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            config: Enrichment configuration.
            transport: Optional httpx transport, used by tests to fake the API.
        """
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(
                        timeout=self.config.timeout_seconds,
                        transport=self._transport,
                    )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _request_body(self, info: TagInput) -> dict:
        parts: list[dict] = [{"text": build_prompt(info)}]
        if info.preview_text:
            parts.append(
                {
                    "text": "Preview content (may be truncated):\n"
                    + info.preview_text[:_MAX_PREVIEW_CHARS]
                }
            )
        if info.image_base64:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": info.content_type or "image/png",
                        "data": info.image_base64,
                    }
                }
            )
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"temperature": 0.2, "maxOutputTokens": 256},
        }

    async def generate(self, info: TagInput) -> list[str]:
        """Ask the service for tags describing a file.

        Returns:
            Up to eight normalized tags; empty when the service is disabled,
            unreachable, or replies with something unusable.
        """
        if not self.enabled:
            metrics.record_enrichment("skipped")
            return []

        url = f"{self.config.endpoint.rstrip('/')}/{self.config.model}:generateContent"
        try:
            client = await self._get_client()
            resp = await client.post(
                url,
                params={"key": self.config.api_key},
                json=self._request_body(info),
            )
            if resp.status_code >= 400:
                logger.warning(
                    "Tag service returned %d: %s", resp.status_code, resp.text[:200]
                )
                metrics.record_enrichment("error")
                return []
            payload = resp.json()
            text = payload["candidates"][0]["content"]["parts"][0].get("text", "")
            tags = parse_tags(text)
        except Exception:
            logger.warning("Tag generation failed for %s", info.name, exc_info=True)
            metrics.record_enrichment("error")
            return []

        metrics.record_enrichment("ok" if tags else "empty")
        return tags
