"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供 OpenAI 兼容的客户端实现 (chat_client)。
"""

from typing import Optional

from merc_core.config.settings import settings
from merc_core.providers.base import ProviderClient
from merc_core.providers.chat_client import ChatCompletionsClient
from merc_core.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "glm")).lower()
    return ChatCompletionsClient(get_provider_config(provider_name), settings)
