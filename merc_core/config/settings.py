"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("MERC_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
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


class Settings(BaseSettings):
    """助手核心配置。"""

    # ---- 推荐后端 ----
    recommendation_backend: Literal["keyword", "llm"] = Field(
        default="keyword",
        description="推荐引擎实现：keyword 为本地关键词排序，llm 走 Provider",
    )
    default_provider: str = Field(
        default="glm",
        description="LLM 推荐时使用的 Provider 名称，例如 glm、kimi",
    )
    default_model: str = Field(
        default="merc-recommend",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )

    # Kimi
    kimi_api_key: Optional[str] = Field(default=None, description="Kimi API 密钥")
    kimi_base_url: str = Field(
        default="https://api.moonshot.cn/v1",
        description="Kimi API 基础URL",
    )
    # GLM / BigModel
    glm_api_key: Optional[str] = Field(default=None, description="GLM API 密钥")
    glm_base_url: str = Field(
        default="https://open.bigmodel.cn/api/paas/v4",
        description="GLM API 基础URL",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 存储与目录 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    catalog_path: Optional[str] = Field(
        default=None,
        description="商品目录文件（YAML/JSON），为空时使用内置示例目录",
    )
    persist_conversation: bool = Field(
        default=False,
        description="是否把消息与购物车持久化到 storage_root",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 对话行为 ----
    max_context_messages: int = Field(default=20, ge=1, le=100, description="最大上下文消息数")
    max_suggestions: int = Field(default=3, ge=1, le=20, description="单轮最多推荐商品数")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("kimi_api_key", "glm_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

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


settings = Settings()
