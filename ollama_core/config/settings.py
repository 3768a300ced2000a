"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。

服务端地址（host）的解析单独由 resolve_host 完成：它是一个纯函数，
只依赖显式传入的 ConfigSnapshot，便于在测试中注入任意组合。
"""

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_HOST = "http://localhost:11434"
HOST_PROPERTY = "ollama.host"
HOST_ENV = "OLLAMA_HOST"
CONFIG_FILE_ENV = "OLLAMA_CONFIG_FILE"


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv(CONFIG_FILE_ENV)
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(Path.cwd() / "config.yaml")

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class OllamaSettings(BaseSettings):
    """客户端配置（使用 Pydantic）。

    优先级：构造参数 > 环境变量 > .env > config.yaml > 默认值。
    超时相关环境变量带 OLLAMA_ 前缀，例如 OLLAMA_READ_TIMEOUT。
    """

    # ---- HTTP 超时（秒） ----
    connect_timeout: float = Field(default=30.0, ge=0.1, description="连接超时时间（秒）")
    read_timeout: float = Field(default=30.0, ge=0.1, description="读超时时间（秒）")
    write_timeout: float = Field(default=30.0, ge=0.1, description="写超时时间（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 天气 Agent ----
    openweathermap_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("openweathermap_api_key", "OPENWEATHERMAP_API_KEY"),
        description="OpenWeatherMap API 密钥",
    )
    openweathermap_base_url: str = Field(
        default="https://api.openweathermap.org/data/2.5",
        description="OpenWeatherMap API 基础URL",
    )
    weather_model: str = Field(default="qwen2.5:7b", description="天气 Agent 用于提取城市名的模型")

    model_config = SettingsConfigDict(
        env_prefix="OLLAMA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

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
            cls._config_source,
            file_secret_settings,
        )


settings = OllamaSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = OllamaSettings


@dataclass(frozen=True)
class ConfigSnapshot:
    """一次 host 解析所需的全部输入。

    - properties: 程序内设置的属性（键 "ollama.host"）。
    - environ: 环境变量快照。
    - file_values: 配置文件内容。
    """

    properties: Mapping[str, str] = field(default_factory=dict)
    environ: Mapping[str, str] = field(default_factory=dict)
    file_values: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(cls, properties: Optional[Mapping[str, str]] = None) -> "ConfigSnapshot":
        """读取当前进程的环境变量与配置文件，生成快照。"""

        return cls(
            properties=dict(properties or {}),
            environ=dict(os.environ),
            file_values=_load_config_from_yaml(),
        )


def resolve_host(snapshot: ConfigSnapshot, explicit: Optional[str] = None) -> str:
    """按优先级解析服务端地址。

    显式参数 > properties["ollama.host"] > 环境变量 OLLAMA_HOST
    > 配置文件 "ollama.host" / "host" > 默认 http://localhost:11434。
    空白值视为未设置。
    """

    candidates = (
        explicit,
        snapshot.properties.get(HOST_PROPERTY),
        snapshot.environ.get(HOST_ENV),
        snapshot.file_values.get(HOST_PROPERTY),
        snapshot.file_values.get("host"),
    )
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return _normalize_host(value)
    return DEFAULT_HOST


def _normalize_host(value: str) -> str:
    host = value.strip().rstrip("/")
    # OLLAMA_HOST 常见写法为 "0.0.0.0:11434"，补全协议头
    if "://" not in host:
        host = f"http://{host}"
    return host
