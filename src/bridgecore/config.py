from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ORDER_TYPES = {"fixed", "float"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bridge_api_key: SecretStr | None = Field(default=None, alias="BRIDGE_API_KEY")
    bridge_api_secret: SecretStr | None = Field(default=None, alias="BRIDGE_API_SECRET")
    bridge_base_url: str = Field(default="https://ff.io", alias="BRIDGE_BASE_URL")
    bridge_http_timeout_seconds: float = Field(
        default=10.0, alias="BRIDGE_HTTP_TIMEOUT_SECONDS"
    )

    state_db_path: str = Field(default="bridgecore_state.db", alias="STATE_DB_PATH")

    quote_validity_ms: int = Field(default=120_000, alias="QUOTE_VALIDITY_MS")
    quote_countdown_interval_ms: int = Field(default=1_000, alias="QUOTE_COUNTDOWN_INTERVAL_MS")
    recalculation_throttle_ms: int = Field(default=120_000, alias="RECALCULATION_THROTTLE_MS")
    reconcile_timeout_ms: int = Field(default=3_000, alias="RECONCILE_TIMEOUT_MS")
    emergency_followup_delay_ms: int = Field(default=1_000, alias="EMERGENCY_FOLLOWUP_DELAY_MS")
    default_order_type: str = Field(default="fixed", alias="DEFAULT_ORDER_TYPE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("bridge_base_url")
    def validate_base_url(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("BRIDGE_BASE_URL must be an http(s) URL")
        return cleaned

    @field_validator("bridge_http_timeout_seconds")
    def validate_http_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("BRIDGE_HTTP_TIMEOUT_SECONDS must be > 0")
        return value

    @field_validator(
        "quote_validity_ms",
        "quote_countdown_interval_ms",
        "reconcile_timeout_ms",
    )
    def validate_positive_ms(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("durations must be > 0 ms")
        return value

    @field_validator("recalculation_throttle_ms", "emergency_followup_delay_ms")
    def validate_non_negative_ms(cls, value: int) -> int:
        if value < 0:
            raise ValueError("delays must be >= 0 ms")
        return value

    @field_validator("default_order_type")
    def validate_order_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _ORDER_TYPES:
            raise ValueError("DEFAULT_ORDER_TYPE must be 'fixed' or 'float'")
        return normalized

    def api_credentials(self) -> tuple[str | None, str | None]:
        key = self.bridge_api_key.get_secret_value() if self.bridge_api_key else None
        secret = self.bridge_api_secret.get_secret_value() if self.bridge_api_secret else None
        return key, secret
