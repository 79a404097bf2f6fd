from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import openai
from openai import AsyncOpenAI

from npcmind.config import env_bool, env_float, env_int, env_str


LOGGER = logging.getLogger("npcmind.llm.client")

RATE_LIMITED_STATUS = 429


@dataclass
class CredentialState:
    """Primary/secondary API keys plus the one-shot rotation flag shared by every agent."""

    primary: str | None
    secondary: str | None = None
    current: str | None = None
    rotated: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.current is None:
            self.current = self.primary

    def rotate_once(self) -> bool:
        with self._lock:
            if self.rotated:
                return False
            self.rotated = True
            if self.current == self.primary and self.secondary:
                self.current = self.secondary
            elif self.current == self.secondary and self.primary:
                self.current = self.primary
            else:
                LOGGER.warning("No alternate API key available for rotation")
                return False
            return True


@dataclass
class OracleClient:
    enabled: bool
    base_url: str
    model: str
    credentials: CredentialState
    timeout_sec: float = 20.0
    max_output_tokens: int = 256
    temperature: float = 0.7
    debug: bool = False
    client_factory: Callable[..., Any] = AsyncOpenAI
    calls: int = 0
    _sdk_client: Any | None = None
    _sdk_key: str | None = None

    @classmethod
    def from_env(cls) -> "OracleClient":
        base_url = env_str("NPC_ORACLE_BASE_URL", "https://api.openai.com/v1")
        model = env_str("NPC_ORACLE_MODEL", "")
        primary = env_str("NPC_ORACLE_API_KEY", "") or None
        secondary = env_str("NPC_ORACLE_API_KEY_SECONDARY", "") or None
        enabled = env_bool("NPC_ORACLE_ENABLED", False)

        return cls(
            enabled=enabled and bool(base_url) and bool(model) and bool(primary),
            base_url=base_url.rstrip("/"),
            model=model,
            credentials=CredentialState(primary=primary, secondary=secondary),
            timeout_sec=env_float("NPC_ORACLE_TIMEOUT_SEC", 20.0, 1.0, 180.0),
            max_output_tokens=env_int("NPC_ORACLE_MAX_OUTPUT_TOKENS", 256, 32, 4096),
            temperature=env_float("NPC_ORACLE_TEMPERATURE", 0.7, 0.0, 1.0),
            debug=env_bool("NPC_ORACLE_DEBUG", False),
        )

    @classmethod
    def disabled(cls) -> "OracleClient":
        return cls(enabled=False, base_url="", model="", credentials=CredentialState(primary=None))

    async def invoke(self, prompt: str) -> str | None:
        """Single attempt; every failure becomes ``None`` and retry cadence is left to the caller."""
        if not self.enabled:
            return None
        if not self.credentials.current:
            LOGGER.warning("Oracle API key is not configured")
            return None

        self.calls += 1
        try:
            response = await asyncio.wait_for(self._create(prompt), timeout=self.timeout_sec)
        except openai.APIStatusError as exc:
            if exc.status_code == RATE_LIMITED_STATUS:
                self._on_rate_limited()
            LOGGER.error("Oracle HTTP error status=%s", exc.status_code)
            return None
        except openai.APIConnectionError as exc:
            LOGGER.error("Oracle unreachable: %s", type(exc).__name__)
            return None
        except TimeoutError:
            LOGGER.error("Oracle call timed out after %.1fs", self.timeout_sec)
            return None
        except Exception as exc:
            LOGGER.error("Oracle call failed type=%s detail=%r", type(exc).__name__, exc)
            return None

        content = self._extract_message_content(response)
        if not content:
            self._debug("Oracle response has no assistant text content")
        return content

    def _on_rate_limited(self) -> None:
        if self.credentials.rotate_once():
            LOGGER.warning("Rate limit hit (429). Switched oracle API key")
            self._sdk_client = None
        else:
            self._debug("Rate limit hit (429); key rotation already used")

    def _get_sdk_client(self) -> Any:
        key = self.credentials.current
        if self._sdk_client is None or self._sdk_key != key:
            self._sdk_client = self.client_factory(
                api_key=key,
                base_url=self.base_url,
                timeout=self.timeout_sec,
                max_retries=0,
            )
            self._sdk_key = key
        return self._sdk_client

    async def _create(self, prompt: str) -> Any:
        response = await self._get_sdk_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            max_tokens=self.max_output_tokens,
            response_format={"type": "json_object"},
        )
        self._debug(f"Oracle response prefix={str(response)[:280]!r}")
        return response

    def _extract_message_content(self, response: Any) -> str | None:
        choices = getattr(response, "choices", None)
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str):
            return content.strip() or None
        if isinstance(content, list):
            chunks = [item.get("text", "") for item in content if isinstance(item, dict)]
            merged = "".join(chunk for chunk in chunks if isinstance(chunk, str)).strip()
            return merged or None
        return None

    def _debug(self, message: str) -> None:
        if self.debug:
            LOGGER.warning(message)
