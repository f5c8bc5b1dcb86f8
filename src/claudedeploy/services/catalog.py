"""Model catalog lookups against OpenAI-compatible ``/v1/models`` endpoints.

Listing models is a convenience: every failure resolves to the vendor's
default list instead of raising.
"""

from __future__ import annotations

import logging
import re

import httpx

from claudedeploy.config import PROVIDER_BASE_URLS, default_models_for
from claudedeploy.storage.models import ProviderEntry

logger = logging.getLogger(__name__)

CATALOG_TIMEOUT = 5.0
MODELS_PATH = "/v1/models"

# Exclusion always wins over inclusion.
EXCLUDE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"embed", re.IGNORECASE), "embedding"),
    (re.compile(r"image|dall-e|stable-diffusion|flux", re.IGNORECASE), "image"),
    (re.compile(r"vision|\bvl\b|-vl-", re.IGNORECASE), "vision"),
    (re.compile(r"audio|whisper|tts|speech|transcribe", re.IGNORECASE), "audio"),
    (re.compile(r"moderation|rerank", re.IGNORECASE), "non-chat"),
]

INCLUDE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"gpt|\bo[134]\b|\bo[134]-", re.IGNORECASE), "openai"),
    (re.compile(r"claude", re.IGNORECASE), "anthropic"),
    (re.compile(r"deepseek", re.IGNORECASE), "deepseek"),
    (re.compile(r"qwen|qwq", re.IGNORECASE), "qwen"),
    (re.compile(r"llama", re.IGNORECASE), "llama"),
    (re.compile(r"mistral|mixtral|codestral", re.IGNORECASE), "mistral"),
    (re.compile(r"gemini|gemma", re.IGNORECASE), "google"),
    (re.compile(r"glm|kimi|moonshot|doubao|ernie", re.IGNORECASE), "other"),
    (re.compile(r"chat|instruct|coder|reasoner", re.IGNORECASE), "generic"),
]


def is_excluded(model: str) -> bool:
    return any(pattern.search(model) for pattern, _ in EXCLUDE_PATTERNS)


def is_chat_model(model: str) -> bool:
    return any(pattern.search(model) for pattern, _ in INCLUDE_PATTERNS)


def filter_chat_models(models: list[str]) -> list[str]:
    """Narrow a raw catalog to chat/completion models, keeping order."""
    seen: set[str] = set()
    candidates = []
    for model in models:
        if model and model not in seen and not is_excluded(model):
            seen.add(model)
            candidates.append(model)
    preferred = [m for m in candidates if is_chat_model(m)]
    return preferred or candidates


def parse_model_ids(payload: object) -> list[str]:
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise ValueError("Unexpected model list shape")
    ids = []
    for item in payload["data"]:
        if isinstance(item, dict):
            ident = item.get("id") or item.get("name")
            if isinstance(ident, str) and ident:
                ids.append(ident)
    return ids


class ModelCatalog:
    """Fetch and filter model lists from providers."""

    def __init__(self, timeout: float = CATALOG_TIMEOUT, client: httpx.AsyncClient | None = None) -> None:
        self.timeout = timeout
        self.client = client

    async def _get(self, url: str, api_key: str) -> httpx.Response:
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        if self.client is not None:
            return await self.client.get(url, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=headers)

    async def fetch_models(self, base_url: str, api_key: str, vendor: str = "openai") -> list[str]:
        """Raw model ids from ``base_url``; the vendor defaults on any failure."""
        url = f"{base_url.rstrip('/')}{MODELS_PATH}"
        try:
            response = await self._get(url, api_key)
            response.raise_for_status()
            models = parse_model_ids(response.json())
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning("Could not fetch models from %s (%s), using defaults", url, e)
            return default_models_for(vendor)
        return models or default_models_for(vendor)

    async def resolve(self, provider: ProviderEntry) -> list[str]:
        """Filtered chat models for ``provider``, never empty."""
        if provider.models:
            return list(provider.models)
        base_url = provider.base_url or PROVIDER_BASE_URLS.get(provider.name, "")
        if not base_url:
            return default_models_for(provider.name)
        raw = await self.fetch_models(base_url, provider.api_key, provider.name)
        return filter_chat_models(raw) or default_models_for(provider.name)
