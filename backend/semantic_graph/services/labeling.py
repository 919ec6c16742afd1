"""Async OpenAI client wrapper used to name clusters.

Classes:
    GroupLabel: Name and description returned for a group of items.
    OpenAIService: Requests cluster labels with retry semantics under a hard timeout.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from semantic_graph.core.config import Settings, get_settings

LABEL_PROMPT = (
    "You name clusters of saved articles. Given numbered items, reply with valid JSON: "
    "{\"name\": <2-4 word title>, \"description\": <one sentence>}."
)


@dataclass(slots=True)
class GroupLabel:
    name: str
    description: str | None = None


class OpenAIService:
    def __init__(self, client: Optional[AsyncOpenAI] = None, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        else:
            self._client = None
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def label_group(self, representatives: Sequence[str], *, model: Optional[str] = None) -> GroupLabel:
        if self._client is None:
            raise RuntimeError("OpenAI client not configured. Set OPENAI_API_KEY.")
        if not representatives:
            raise ValueError("label_group requires at least one representative")

        user_prompt = "\n".join(f"{idx + 1}. {text}" for idx, text in enumerate(representatives))
        payload = dict(
            model=model or self._settings.openai_label_model,
            messages=[
                {"role": "system", "content": LABEL_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            temperature=0.3,
            n=1,
            response_format={"type": "json_object"},
        )
        response = await asyncio.wait_for(
            _retry_chat(self._client, payload),
            timeout=self._settings.label_timeout_seconds,
        )
        content = getattr(response.choices[0].message, "content", "") or ""
        data = json.loads(content)
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValueError("label response did not include a name")
        description = data.get("description")
        return GroupLabel(name=name, description=str(description).strip() if description else None)


@retry(wait=wait_exponential(multiplier=1, min=1, max=20), stop=stop_after_attempt(3), reraise=True)
async def _retry_chat(client: AsyncOpenAI, payload: dict[str, Any]):
    return await client.chat.completions.create(**payload)


__all__ = ["GroupLabel", "OpenAIService", "LABEL_PROMPT"]
