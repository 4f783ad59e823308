# trendrelay/core/config.py
from __future__ import annotations

import logging
from typing import Any, List

from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("trendrelay.config")

MIN_KEY_LENGTH = 16


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Credentials (static shared secrets) ---
    CONTROLLER_KEY: str = ""
    BOT_KEY: str = ""

    # --- Server ---
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # --- Command log bounds ---
    COMMAND_LOG_MAX_ENTRIES: int = 50
    COMMAND_LOG_RETENTION_SECONDS: int = 6 * 60 * 60

    # --- Timers ---
    TRADE_SIGNAL_TTL_SECONDS: float = 5.0
    FORCE_CLOSE_RESET_SECONDS: float = 5.0
    BREAKEVEN_TIMEOUT_SECONDS: float = 10.0

    # --- Liveness ---
    BOT_IDLE_SECONDS: int = 5 * 60

    # --- Background sweeps ---
    SIGNAL_SWEEP_INTERVAL_SECONDS: float = 10.0
    MAINTENANCE_SWEEP_INTERVAL_SECONDS: float = 6 * 60 * 60

    def model_post_init(self, __context: Any) -> None:
        # Normalize
        self.CONTROLLER_KEY = (self.CONTROLLER_KEY or "").strip()
        self.BOT_KEY = (self.BOT_KEY or "").strip()
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        # Credentials
        if not self.CONTROLLER_KEY:
            errors.append("CONTROLLER_KEY must be set.")
        if not self.BOT_KEY:
            errors.append("BOT_KEY must be set.")
        if self.CONTROLLER_KEY and self.CONTROLLER_KEY == self.BOT_KEY:
            errors.append("CONTROLLER_KEY and BOT_KEY must differ.")

        for name in ("CONTROLLER_KEY", "BOT_KEY"):
            value = getattr(self, name)
            if value and len(value) < MIN_KEY_LENGTH:
                warnings.append(
                    f"{name} is shorter than {MIN_KEY_LENGTH} characters; "
                    "anyone who can reach the server may guess it."
                )

        if self.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            errors.append(f"LOG_LEVEL '{self.LOG_LEVEL}' is not a logging level.")

        # Limits sanity
        if self.COMMAND_LOG_MAX_ENTRIES <= 0:
            errors.append("COMMAND_LOG_MAX_ENTRIES must be > 0.")
        if self.COMMAND_LOG_RETENTION_SECONDS <= 0:
            errors.append("COMMAND_LOG_RETENTION_SECONDS must be > 0.")

        for name in (
            "TRADE_SIGNAL_TTL_SECONDS",
            "FORCE_CLOSE_RESET_SECONDS",
            "BREAKEVEN_TIMEOUT_SECONDS",
            "BOT_IDLE_SECONDS",
            "SIGNAL_SWEEP_INTERVAL_SECONDS",
            "MAINTENANCE_SWEEP_INTERVAL_SECONDS",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be > 0.")

        if 0 < self.COMMAND_LOG_RETENTION_SECONDS < self.BOT_IDLE_SECONDS:
            warnings.append(
                "COMMAND_LOG_RETENTION_SECONDS is shorter than BOT_IDLE_SECONDS; "
                "a bot that is still considered connected may miss commands."
            )

        if not 0 < self.PORT < 65536:
            errors.append("PORT must be between 1 and 65535.")

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


settings = Settings()
