"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("receptionist.config")


class Settings(BaseSettings):
    # LLM
    llm_provider: str = "claude"           # "claude" or "ollama"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-latest"
    ollama_model: str = "qwen2.5:7b"
    ollama_url: str = "http://localhost:11434"
    llm_temperature: float = 0.4
    llm_max_tokens: int = 200
    llm_timeout_seconds: float = 4.0

    # "assisted" (LLM phrasing, scripted fallback) or "scripted"
    reply_strategy: str = "assisted"

    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_sms_from: str = ""
    owner_mobile: str = ""
    notify_timeout_seconds: float = 5.0

    # Voice
    tts_voice: str = "Polly.Joanna"
    speech_language: str = "en-US"

    # Intake schema override (JSONL); empty uses the bundled plumbing intake
    schema_path: str = ""

    # Sessions
    session_idle_timeout_seconds: float = 900.0
    session_sweep_interval_seconds: float = 60.0

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def sms_enabled(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_sms_from
            and self.owner_mobile
        )

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"sk-ant-...", "AC...", "+1..."}

        if self.reply_strategy not in ("assisted", "scripted"):
            raise ValueError(
                f"REPLY_STRATEGY must be 'assisted' or 'scripted', got {self.reply_strategy!r}"
            )

        if self.llm_provider not in ("claude", "ollama"):
            raise ValueError(
                f"LLM_PROVIDER must be 'claude' or 'ollama', got {self.llm_provider!r}"
            )

        # LLM key is optional; the scripted prompts carry the call without it
        if self.reply_strategy == "assisted" and self.llm_provider == "claude":
            if not self.anthropic_api_key or self.anthropic_api_key in _placeholders:
                warnings.append(
                    "ANTHROPIC_API_KEY is missing or a placeholder, replies will be scripted."
                )

        # Twilio: SMS summary needs credentials plus both numbers
        if not self.twilio_account_sid or not self.twilio_auth_token:
            warnings.append("Twilio credentials are not set, SMS summary disabled.")
        elif self.twilio_account_sid in _placeholders:
            warnings.append("TWILIO_ACCOUNT_SID is a placeholder, SMS summary won't work.")
        if not self.twilio_sms_from:
            warnings.append("TWILIO_SMS_FROM not set, leads will only be logged.")
        if not self.owner_mobile:
            warnings.append("OWNER_MOBILE not set, leads will only be logged.")

        # Admin API key
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        return warnings


settings = Settings()
