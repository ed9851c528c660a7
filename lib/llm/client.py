"""Chat-completions client over httpx, JSON mode only.

Azure OpenAI when AZURE_OPENAI_API_KEY + AZURE_OPENAI_ENDPOINT are set,
otherwise api.openai.com with OPENAI_API_KEY. Every call runs at low
temperature and must return a JSON object. Anything else raises
LLMUnavailable; callers decide what "no answer" means.
"""

import json
import os
from typing import Optional, Dict, Any

import httpx
from loguru import logger

from services.ownership.errors import LLMUnavailable
from services.ownership.retry import RetryPolicy

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_TEMPERATURE = 0.1


class ChatClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        azure_endpoint: Optional[str] = None,
        azure_deployment: Optional[str] = None,
        azure_api_version: str = "2024-12-01-preview",
        retry: Optional[RetryPolicy] = None,
        timeout: float = 60.0,
    ):
        self.client = client
        self.api_key = api_key
        self.model = model
        self.azure_endpoint = (azure_endpoint or "").rstrip("/") or None
        self.azure_deployment = azure_deployment
        self.azure_api_version = azure_api_version
        self.retry = retry or RetryPolicy()
        self.timeout = timeout

    @classmethod
    def from_env(cls, client: httpx.AsyncClient, retry: Optional[RetryPolicy] = None) -> "ChatClient":
        azure_key = os.getenv("AZURE_OPENAI_API_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if azure_key and azure_endpoint:
            return cls(
                client,
                api_key=azure_key,
                azure_endpoint=azure_endpoint,
                azure_deployment=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o-mini"),
                azure_api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-12-01-preview"),
                retry=retry,
            )
        return cls(
            client,
            api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            retry=retry,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _target(self) -> tuple:
        if self.azure_endpoint:
            url = (
                f"{self.azure_endpoint}/openai/deployments/{self.azure_deployment}"
                f"/chat/completions?api-version={self.azure_api_version}"
            )
            return url, {"api-key": self.api_key, "Content-Type": "application/json"}
        return OPENAI_URL, {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def complete_json(
        self,
        system: str,
        user: str,
        max_tokens: int = 1500,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> Dict[str, Any]:
        """One chat completion parsed as a JSON object."""
        if not self.configured:
            raise LLMUnavailable("No OPENAI_API_KEY or AZURE_OPENAI_API_KEY set")

        url, headers = self._target()
        payload: Dict[str, Any] = {
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if not self.azure_endpoint:
            payload["model"] = self.model

        try:
            resp = await self.retry.post(self.client, url, headers=headers, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise LLMUnavailable(f"Chat completion request failed: {e}") from e
        if resp.status_code != 200:
            raise LLMUnavailable(
                f"Chat completion returned HTTP {resp.status_code}",
                {"status": resp.status_code, "body": resp.text[:300]},
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMUnavailable(f"Unexpected chat completion payload: {e}") from e
        if not content:
            raise LLMUnavailable("Chat completion returned empty content")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Chat completion is not valid JSON: {content[:120]!r}")
            raise LLMUnavailable("Chat completion is not valid JSON") from e
        if not isinstance(data, dict):
            raise LLMUnavailable("Chat completion is not a JSON object")
        return data
