"""Pydantic models with basic validations"""

from pydantic import BaseModel, field_validator, ConfigDict, model_validator, ValidationInfo
from typing import Optional, Dict, Any, Union, List
import logging
import yaml
from dotenv import main
import os
import re

from .pipeline import (
    ConverterConfig as ConverterConfig_,
    DelivererConfig as DelivererConfig_,
    IngestConfig as IngestConfig_,
    DeviceRegistry
)

logger = logging.getLogger(__name__)

DEFAULT_SMTP_PORT = 587
DEFAULT_TMP_FILES_PATH = "/files/"

EMAIL_PATTERN = r"[^@]+@[^@]+\.[a-zA-Z]{2,}$"

def _validate_email(v: str) -> str:
    if '@' not in v or not re.match(EMAIL_PATTERN, v):
        raise ValueError(f"Email address format is invalid: {v}")
    return v

class RunConfig(BaseModel):
    log_dir: str="./logs"
    log_to_file: bool=False

class TelegramConfig(BaseModel):
    token: str
    poll_timeout_seconds: int=10
    max_workers: int=8
    max_file_size_mb: float=20.0 # Bot API getFile limit

    @field_validator('token')
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("token for telegram bot not set")
        return v

    @field_validator('poll_timeout_seconds')
    @classmethod
    def validate_poll_timeout(cls, v) -> int:
        return max(1, min(v, 50))

    @field_validator('max_workers')
    @classmethod
    def validate_max_workers(cls, v) -> int:
        return max(1, min(v, 64))

    @field_validator('max_file_size_mb')
    @classmethod
    def validate_max_file_size_mb(cls, v) -> float:
        return max(0.1, min(v, 20.0))

class DelivererConfig(BaseModel):
    smtp_server: str
    sender: str
    password: str
    port: Optional[int]=None
    insecure: bool=False
    max_attachment_size_mb: float=25.0
    timeout_seconds: int=60

    @field_validator('smtp_server')
    @classmethod
    def validate_smtp_server(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("smtp host not set")
        return v

    @field_validator('sender')
    @classmethod
    def validate_sender(cls, v: str) -> str:
        if not (v or "").strip():
            raise ValueError("emailfrom not set")
        return _validate_email(v.strip())

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not v:
            raise ValueError("password for email not set")
        return v

    @field_validator('max_attachment_size_mb')
    @classmethod
    def validate_max_attachment_size_mb(cls, v: float) -> float:
        return max(0.1, v)

    @model_validator(mode='after')
    def split_host_port(self) -> 'DelivererConfig':
        """Accept "host:port" in smtp_server; an explicit port wins over the embedded one"""
        if ':' in self.smtp_server:
            host, _, embedded = self.smtp_server.partition(':')
            self.smtp_server = host
            if self.port is None and embedded:
                try:
                    self.port = int(embedded)
                except ValueError:
                    raise ValueError(f"Invalid port in smtp host: {embedded}")
        if self.port is None:
            self.port = DEFAULT_SMTP_PORT
        if not (1 <= self.port <= 65535):
            raise ValueError("Port must be an integer between 1 and 65535.")
        return self

    def to_pipeline_config(self) -> 'DelivererConfig_':
        return DelivererConfig_(
            smtp_server=self.smtp_server,
            port=self.port,
            sender=self.sender,
            password=self.password,
            insecure=self.insecure,
            max_attachment_size_mb=self.max_attachment_size_mb,
            timeout_seconds=self.timeout_seconds
        )

class DevicesConfig(BaseModel):
    fallback: Optional[str]=None
    registry: Union[str, Dict[str, str], None]=None
    buttons_per_row: int=2
    """registry is either "Name:email|Name:email" or a mapping of name to email"""

    @field_validator('fallback')
    @classmethod
    def validate_fallback(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        if not v:
            return None
        return _validate_email(v)

    @field_validator('buttons_per_row')
    @classmethod
    def validate_buttons_per_row(cls, v) -> int:
        return max(1, min(v, 8))

    def to_registry(self) -> DeviceRegistry:
        if isinstance(self.registry, dict):
            return DeviceRegistry.from_pairs(list(self.registry.items()), self.fallback)
        return DeviceRegistry.parse(self.registry or "", self.fallback)

class ConverterConfig(BaseModel):
    ebook_convert_path: str="ebook-convert"
    target_format: str="epub"
    timeout_seconds: int=300

    @field_validator('target_format')
    @classmethod
    def validate_target_format(cls, v: str) -> str:
        v = v.strip().lstrip('.').lower()
        if not v or not v.isalnum():
            raise ValueError(f"Invalid target format: {v}")
        return v

    @field_validator('timeout_seconds')
    @classmethod
    def validate_timeout(cls, v) -> int:
        return max(10, min(v, 3600))

    def to_pipeline_config(self) -> 'ConverterConfig_':
        return ConverterConfig_(
            ebook_convert_path=self.ebook_convert_path,
            target_format=self.target_format,
            timeout_seconds=self.timeout_seconds
        )

class StorageConfig(BaseModel):
    tmp_dir: str=DEFAULT_TMP_FILES_PATH
    session_ttl_minutes: int=0
    sweep_interval_seconds: int=300
    """session_ttl_minutes of 0 keeps pending sessions until they are consumed or superseded"""

    @field_validator('tmp_dir')
    @classmethod
    def validate_tmp_dir(cls, v: str) -> str:
        return (v or "").strip() or DEFAULT_TMP_FILES_PATH

    @field_validator('session_ttl_minutes')
    @classmethod
    def validate_session_ttl(cls, v) -> int:
        return max(0, v)

    @field_validator('sweep_interval_seconds')
    @classmethod
    def validate_sweep_interval(cls, v) -> int:
        return max(10, v)

class MainConfig(BaseModel):
    model_config = ConfigDict(extra='forbid') # prevent unknown fields

    telegram: TelegramConfig
    deliver: DelivererConfig
    devices: DevicesConfig=DevicesConfig()
    convert: ConverterConfig=ConverterConfig()
    storage: StorageConfig=StorageConfig()
    run: RunConfig=RunConfig()
    """If devices, convert, storage or run is not provided, go with default settings."""

    @model_validator(mode="before")
    @classmethod
    def resolve_references(cls, data: Any, info: ValidationInfo) -> Any:
        if info.context and info.context.get("raw"):
            return data
        # Let ValueError bubble up naturally instead of trying to wrap it
        if isinstance(data, dict):
            return cls._resolve_references(data)
        return data

    @model_validator(mode="after")
    def validate_destinations(self) -> 'MainConfig':
        """At least one destination email required"""
        if not self.devices.fallback and not self.devices.to_registry().devices:
            raise ValueError("emailto not set: configure a fallback address or at least one valid Kindle device")
        return self

    @classmethod
    def from_yaml(cls, path: str) -> 'MainConfig':
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        return cls(**(data or {}))

    @classmethod
    def from_env(cls) -> 'MainConfig':
        """Build configuration from the UBOT_* environment variables (and a .env file, if any)"""
        main.load_dotenv()

        insecure_env = os.getenv("UBOT_SMTP_INSECURE", "")
        port_env = os.getenv("UBOT_SMTP_PORT", "").strip()
        data = {
            "telegram": {"token": os.getenv("UBOT_TELEGRAM_TOKEN", "")},
            "deliver": {
                "smtp_server": os.getenv("UBOT_SMTP_HOST", ""),
                "port": port_env or None,
                "sender": os.getenv("UBOT_EMAIL_FROM", ""),
                "password": os.getenv("UBOT_PASSWORD", ""),
                "insecure": insecure_env.lower() == "true" or insecure_env == "1",
            },
            "devices": {
                "fallback": os.getenv("UBOT_EMAIL_TO") or None,
                "registry": os.getenv("UBOT_KINDLE_DEVICES", ""),
            },
            "storage": {"tmp_dir": os.getenv("UBOT_TMP_FILES_PATH") or DEFAULT_TMP_FILES_PATH},
        }
        # Values come straight from the environment: no reference resolution
        return cls.model_validate(data, context={"raw": True})

    @staticmethod
    def _resolve_references(data: Dict[str,Any]) -> Dict[str, Any]:
        """Recursively resolve 'file:path', 'env:variable', 'var:variable', and '$variable' references"""
        main.load_dotenv() # load .env file
        if isinstance(data, dict):
            result = {}
            for key, value in data.items():
                if isinstance(value, str) and value.startswith('file:'):
                    filepath = value[5:]
                    try:
                        with open(filepath, 'r', encoding='utf-8') as f:
                            result[key] = f.read().strip()
                    except OSError as e:
                        raise ValueError(f"Failed to load file '{filepath}'. Reason: {e}")
                elif isinstance(value, str) and value.startswith('env:'):
                    envname = value[4:]
                    value = os.getenv(envname)
                    if value is None:
                        raise ValueError(f"Environment variable '{envname}' is not set or is empty. Please check your .env file or environment variables.")
                    else:
                        result[key] = value
                elif isinstance(value, str) and value.startswith('var:'):
                    # var: prefix for secrets (same as env: but semantically clearer for secrets)
                    envname = value[4:]
                    value = os.getenv(envname)
                    if value is None:
                        raise ValueError(f"Secret '{envname}' is not set or is empty. Please check your repository secrets or environment variables.")
                    else:
                        result[key] = value
                elif isinstance(value, str) and value.startswith('$'):
                    # $ prefix for bash-style environment variables
                    envname = value[1:]
                    value = os.getenv(envname)
                    if value is None:
                        raise ValueError(f"Environment variable '{envname}' is not set or is empty. Please check your .env file or environment variables.")
                    else:
                        result[key] = value
                else:
                    result[key] = MainConfig._resolve_references(value)
            return result
        elif isinstance(data, list):
            return [MainConfig._resolve_references(item) for item in data]
        else:
            return data

    def get_pipeline_configs(self) -> Dict[str, Any]:
        """Convert all configs to pipeline dataclasses"""
        return {
            "telegram": self.telegram,
            "deliver": self.deliver.to_pipeline_config(),
            "convert": self.convert.to_pipeline_config(),
            "ingest": IngestConfig_(
                tmp_dir=self.storage.tmp_dir,
                target_format=self.convert.target_format
            ),
            "registry": self.devices.to_registry(),
            "buttons_per_row": self.devices.buttons_per_row,
            "session_ttl_seconds": self.storage.session_ttl_minutes * 60,
            "sweep_interval_seconds": self.storage.sweep_interval_seconds,
            "log_dir": self.run.log_dir,
            "log_to_file": self.run.log_to_file
        }
