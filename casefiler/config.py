"""Configuration management for the send-time filing pipeline."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv
from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()


def _split_list(value: str | Sequence[str] | None) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;,]", value)
    else:
        items = list(value)
    return [item.strip() for item in items if item and item.strip()]


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    api_origin: HttpUrl = Field(..., alias="SINGLECASE_API_ORIGIN")
    tenant_prefix: str = Field("singlecase", alias="SINGLECASE_TENANT_PREFIX")
    workspace_host: str | None = Field(None, alias="SINGLECASE_WORKSPACE_HOST")
    session_ttl_hours: float = Field(8, alias="SINGLECASE_SESSION_TTL_HOURS")

    timeout_auth_cleanup: float = Field(0.7, alias="TIMEOUT_AUTH_CLEANUP")
    timeout_item_keys: float = Field(2.0, alias="TIMEOUT_ITEM_KEYS")
    timeout_storage: float = Field(1.5, alias="TIMEOUT_STORAGE")
    timeout_token: float = Field(0.9, alias="TIMEOUT_TOKEN")
    timeout_subject: float = Field(1.5, alias="TIMEOUT_SUBJECT")
    timeout_body: float = Field(2.5, alias="TIMEOUT_BODY")
    timeout_fetch: float = Field(10.0, alias="TIMEOUT_FETCH")
    http_timeout: float = Field(60, alias="HTTP_TIMEOUT")

    kv_store_db: Path = Field(Path("data/casefiler.db"), alias="KV_STORE_DB")
    roaming_settings_file: Path = Field(
        Path("data/roaming_settings.json"), alias="ROAMING_SETTINGS_FILE"
    )

    graph_client_id: str | None = Field(None, alias="GRAPH_CLIENT_ID")
    graph_tenant_id: str | None = Field(None, alias="GRAPH_TENANT_ID")
    graph_authority: str | None = Field(None, alias="GRAPH_AUTHORITY")
    graph_scopes_raw: str = Field("Mail.ReadWrite", alias="GRAPH_SCOPES")
    graph_mailbox: str | None = Field(None, alias="GRAPH_MAILBOX")
    graph_token_cache: Path = Field(Path("data/msal_token_cache.bin"), alias="GRAPH_TOKEN_CACHE")

    notification_prefix: str = Field("SingleCase", alias="NOTIFICATION_PREFIX")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _validate_timeouts(self):
        for name, value in self.stage_timeouts.items():
            if value <= 0:
                raise ValueError(f"Stage timeout '{name}' must be positive.")
        if self.session_ttl_hours <= 0:
            raise ValueError("SINGLECASE_SESSION_TTL_HOURS must be positive.")
        return self

    @field_validator(
        "workspace_host",
        "graph_client_id",
        "graph_tenant_id",
        "graph_authority",
        "graph_mailbox",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("tenant_prefix", mode="before")
    @classmethod
    def _strip_slashes(cls, value):
        if isinstance(value, str):
            stripped = value.strip().strip("/")
            return stripped or "singlecase"
        return value

    @property
    def origin(self) -> str:
        return str(self.api_origin).rstrip("/")

    @property
    def stage_timeouts(self) -> dict[str, float]:
        """Per-stage timeout budgets, in seconds."""
        return {
            "auth_cleanup": self.timeout_auth_cleanup,
            "item_keys": self.timeout_item_keys,
            "storage": self.timeout_storage,
            "token": self.timeout_token,
            "subject": self.timeout_subject,
            "body": self.timeout_body,
            "fetch": self.timeout_fetch,
        }

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_hours * 60 * 60

    @property
    def authority_url(self) -> str:
        if self.graph_authority:
            return self.graph_authority.rstrip("/")
        if self.graph_tenant_id:
            return f"https://login.microsoftonline.com/{self.graph_tenant_id}"
        return "https://login.microsoftonline.com/common"

    @property
    def graph_scopes(self) -> list[str]:
        """Scopes requested for delegated Graph auth."""
        return _split_list(self.graph_scopes_raw) or ["Mail.ReadWrite"]
