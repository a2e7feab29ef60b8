"""Runtime configuration for the Tandem backend.

Values come from constructor defaults, a plain dict, or environment
variables. Only the responder reads most of these settings; the rest of
the backend has no tunables.

Example::

    config = TandemConfig.from_env()
    responder = CharacterResponder(OpenAIChatModel(config), config)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.1-70b-versatile"
DEFAULT_PERSONA = "쿠루미"


@dataclass
class TandemConfig:
    """Settings for the external responder and prompt construction.

    Attributes:
        responder_base_url: OpenAI-compatible API root.
        api_key: Bearer token for the API. None disables real calls.
        model_name: Chat model identifier.
        temperature: Sampling temperature.
        max_tokens: Completion length cap.
        timeout_seconds: Per-attempt deadline for one completion.
        max_attempts: Total attempts on transient failures.
        history_window: Number of trailing messages rendered into the prompt.
        persona_name: Character name used in the prompt and history labels.
    """

    responder_base_url: str = DEFAULT_BASE_URL
    api_key: str | None = None
    model_name: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 1500
    timeout_seconds: float = 30.0
    max_attempts: int = 2
    history_window: int = 8
    persona_name: str = DEFAULT_PERSONA

    def __post_init__(self) -> None:
        """Validate numeric ranges."""
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be at least 1, got {self.max_tokens}")
        if self.history_window < 0:
            raise ValueError(f"history_window must not be negative, got {self.history_window}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary, masking the API key."""
        return {
            "responder_base_url": self.responder_base_url,
            "api_key": "***" if self.api_key else None,
            "model_name": self.model_name,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout_seconds": self.timeout_seconds,
            "max_attempts": self.max_attempts,
            "history_window": self.history_window,
            "persona_name": self.persona_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TandemConfig:
        """Deserialize from dictionary.

        Args:
            data: Dictionary with configuration values.
                  Missing keys use defaults.

        Returns:
            TandemConfig instance.
        """
        return cls(
            responder_base_url=data.get("responder_base_url", DEFAULT_BASE_URL),
            api_key=data.get("api_key"),
            model_name=data.get("model_name", DEFAULT_MODEL),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 1500)),
            timeout_seconds=float(data.get("timeout_seconds", 30.0)),
            max_attempts=int(data.get("max_attempts", 2)),
            history_window=int(data.get("history_window", 8)),
            persona_name=data.get("persona_name", DEFAULT_PERSONA),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TandemConfig:
        """Build a config from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            TandemConfig instance.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        return cls(
            responder_base_url=env.get("TANDEM_RESPONDER_BASE_URL", DEFAULT_BASE_URL),
            api_key=env.get("GROQ_API_KEY") or None,
            model_name=env.get("TANDEM_MODEL", DEFAULT_MODEL),
            temperature=_parse(env, "TANDEM_TEMPERATURE", float, 0.7),
            max_tokens=_parse(env, "TANDEM_MAX_TOKENS", int, 1500),
            timeout_seconds=_parse(env, "TANDEM_TIMEOUT_SECONDS", float, 30.0),
            max_attempts=_parse(env, "TANDEM_MAX_ATTEMPTS", int, 2),
            history_window=_parse(env, "TANDEM_HISTORY_WINDOW", int, 8),
            persona_name=env.get("TANDEM_PERSONA_NAME", DEFAULT_PERSONA),
        )


def _parse(env: Mapping[str, str], name: str, kind: type, default: Any) -> Any:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be {kind.__name__}, got {raw!r}") from exc
