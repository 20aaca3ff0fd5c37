from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .config import ConfigError, read_config, resolve_config_path
from .gateway.client import GatewayConfig
from .gateway.codec import DEFAULT_GATEWAY_URL
from .gateway.state import GatewayIntents, PresenceStatus


class GatewaySettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: SecretStr | None = None
    url: str = DEFAULT_GATEWAY_URL
    intents: int = int(GatewayIntents.default())
    status: PresenceStatus = PresenceStatus.ONLINE
    hello_timeout: float = Field(default=20.0, gt=0)
    connect_timeout: float = Field(default=30.0, gt=0)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_cap: float = Field(default=60.0, gt=0)
    backoff_jitter: float = Field(default=0.25, ge=0, le=1)
    stability_window: float = Field(default=60.0, ge=0)
    max_resume_failures: int = Field(default=3, ge=1)
    subscriber_capacity: int = Field(default=256, ge=1)
    command_capacity: int = Field(default=64, ge=1)
    typing_ttl: float = Field(default=10.0, gt=0)

    @field_validator("token", mode="before")
    @classmethod
    def _validate_token(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("token must be a string")
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("token must be a non-empty string")
        return cleaned

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> Any:
        if not isinstance(value, str):
            raise ValueError("url must be a string")
        cleaned = value.strip()
        if not cleaned.startswith(("ws://", "wss://")):
            raise ValueError("url must be a ws:// or wss:// URL")
        return cleaned

    @field_validator("intents", mode="before")
    @classmethod
    def _validate_intents(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("intents must be an integer or a list of intent names")
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        if isinstance(value, int):
            if value < 0:
                raise ValueError("intents must be non-negative")
            return value
        if isinstance(value, list):
            flags = GatewayIntents(0)
            for name in value:
                if not isinstance(name, str):
                    raise ValueError("intent names must be strings")
                try:
                    flags |= GatewayIntents[name.strip().upper()]
                except KeyError:
                    raise ValueError(f"unknown intent {name!r}") from None
            return int(flags)
        raise ValueError("intents must be an integer or a list of intent names")

    @model_validator(mode="after")
    def _check_backoff(self) -> GatewaySettings:
        if self.backoff_cap < self.backoff_base:
            raise ValueError("backoff_cap must not be below backoff_base")
        return self

    @field_serializer("token")
    def _dump_token(self, value: SecretStr | None) -> str | None:
        return value.get_secret_value() if value else None

    def to_gateway_config(self) -> GatewayConfig:
        if self.token is None:
            raise ConfigError("Missing gateway token.")
        return GatewayConfig(
            token=self.token,
            intents=self.intents,
            status=self.status,
            url=self.url,
            hello_timeout=self.hello_timeout,
            connect_timeout=self.connect_timeout,
            backoff_base=self.backoff_base,
            backoff_cap=self.backoff_cap,
            backoff_jitter=self.backoff_jitter,
            stability_window=self.stability_window,
            max_resume_failures=self.max_resume_failures,
            subscriber_capacity=self.subscriber_capacity,
            command_capacity=self.command_capacity,
            typing_ttl=self.typing_ttl,
        )


class TuicordSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="allow",
        env_prefix="TUICORD__",
        env_nested_delimiter="__",
    )

    gateway: GatewaySettings = Field(default_factory=GatewaySettings)

    @model_validator(mode="before")
    @classmethod
    def _reject_top_level_token(cls, data: Any) -> Any:
        if isinstance(data, dict) and "token" in data:
            raise ValueError("Move token under [gateway].")
        return data

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def load_settings(path: str | Path | None = None) -> tuple[TuicordSettings, Path]:
    cfg_path = resolve_config_path(path)
    # surfaces missing files and TOML syntax errors as ConfigError
    read_config(cfg_path)
    return _load_settings_from_path(cfg_path), cfg_path


def validate_settings_data(
    data: dict[str, Any], *, config_path: Path
) -> TuicordSettings:
    try:
        return TuicordSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc


def require_token(settings: TuicordSettings, config_path: Path) -> str:
    token = settings.gateway.token
    if token is None or not token.get_secret_value().strip():
        raise ConfigError(f"Missing gateway token in {config_path}.")
    return token.get_secret_value().strip()


def _load_settings_from_path(cfg_path: Path) -> TuicordSettings:
    cfg = dict(TuicordSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "TuicordSettingsBound",
        (TuicordSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc
