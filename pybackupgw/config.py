# pyBackupGW Module - Configuration
# -*- coding: utf-8 -*-
"""
Configuration for pyBackupGW

Settings are read from environment variables (optionally loaded from a .env
file with python-dotenv first):

    GW_HOST              - IPv4 address of the Backup Gateway (required)
    GW_PORT              - HTTPS port of the gateway (default: 443)
    GW_EMAIL             - Customer email, only needed if the firmware requires login
    GW_PASSWORD          - Customer password
    GW_TIMEOUT           - Seconds to wait for any single request (default: 5)
    GW_POLL_INTERVAL     - Seconds between the end of one poll cycle and the next (default: 2)
    GW_RETRY_INTERVAL    - Seconds before retrying a failed initial contact (default: 60)
    GW_DEBOUNCE          - Seconds to collapse configuration edits into one reconnect (default: 0.5)
    GW_FAILURE_THRESHOLD - Consecutive failed poll cycles before an error is shown (default: 5)
    GW_DEBUG             - Enable debug logging (default: no)

The connection part of the settings (host, port, credentials) is a
GatewayConfig and lives in a ConfigStore so that it can be edited at runtime.
"""
import abc
import logging
import os
from typing import Optional

import dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

ENV_KEYS = {
    "host": "GW_HOST",
    "port": "GW_PORT",
    "email": "GW_EMAIL",
    "password": "GW_PASSWORD",
}


class GatewayConfig(BaseModel):
    """Endpoint and credentials for one gateway"""
    host: str = ""
    port: int = Field(default=443, ge=1, le=65535)
    email: Optional[str] = None
    password: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.password)


class Settings(BaseSettings):
    host: str = Field(default="", alias="GW_HOST")
    port: int = Field(default=443, alias="GW_PORT")
    email: Optional[str] = Field(default=None, alias="GW_EMAIL")
    password: Optional[str] = Field(default=None, alias="GW_PASSWORD")
    timeout: float = Field(default=5.0, alias="GW_TIMEOUT")
    poll_interval: float = Field(default=2.0, alias="GW_POLL_INTERVAL")
    retry_interval: float = Field(default=60.0, alias="GW_RETRY_INTERVAL")
    debounce: float = Field(default=0.5, alias="GW_DEBOUNCE")
    failure_threshold: int = Field(default=5, alias="GW_FAILURE_THRESHOLD")
    debug: bool = Field(default=False, alias="GW_DEBUG")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, populate_by_name=True, extra="ignore")

    def gateway_config(self) -> GatewayConfig:
        return GatewayConfig(host=self.host, port=self.port, email=self.email, password=self.password)


class ConfigStore(abc.ABC):

    @abc.abstractmethod
    def load(self) -> GatewayConfig:
        raise NotImplementedError

    @abc.abstractmethod
    def save(self, config: GatewayConfig) -> None:
        raise NotImplementedError

    def update(self, **changes) -> GatewayConfig:
        unknown = set(changes) - set(GatewayConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown gateway setting(s): {', '.join(sorted(unknown))}")
        config = GatewayConfig.model_validate({**self.load().model_dump(), **changes})
        self.save(config)
        log.info(f"Updated gateway configuration: {', '.join(sorted(changes))}")
        return config


class MemoryConfigStore(ConfigStore):

    def __init__(self, config: Optional[GatewayConfig] = None):
        self._config = config or GatewayConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> "MemoryConfigStore":
        return cls(settings.gateway_config())

    def load(self) -> GatewayConfig:
        return self._config

    def save(self, config: GatewayConfig) -> None:
        self._config = config


class EnvFileConfigStore(ConfigStore):
    """Keeps the gateway connection settings in a dotenv file"""

    def __init__(self, path: str = ".env"):
        self.path = path

    def load(self) -> GatewayConfig:
        values = dotenv.dotenv_values(self.path) if os.path.exists(self.path) else {}
        data = {field: values[key] for field, key in ENV_KEYS.items() if values.get(key) not in (None, "")}
        return GatewayConfig.model_validate(data)

    def save(self, config: GatewayConfig) -> None:
        if not os.path.exists(self.path):
            open(self.path, "a").close()
        existing = dotenv.dotenv_values(self.path)
        for field, key in ENV_KEYS.items():
            value = getattr(config, field)
            if value is None or value == "":
                if key in existing:
                    dotenv.unset_key(self.path, key)
            else:
                dotenv.set_key(self.path, key, str(value))
