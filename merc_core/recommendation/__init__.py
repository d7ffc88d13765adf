"""推荐引擎实现。

- keyword: 本地关键词排序，默认实现，无需网络。
- llm: 通过 Provider 调用大模型生成回复与商品列表。
"""

from typing import Optional

from merc_core.config.settings import settings
from merc_core.domain.stores import ProductCatalog
from merc_core.providers import create_provider
from merc_core.recommendation.base import RecommendationEngine
from merc_core.recommendation.keyword import KeywordRecommendationEngine
from merc_core.recommendation.llm import LlmRecommendationEngine


def create_engine(catalog: ProductCatalog, backend: Optional[str] = None) -> RecommendationEngine:
    """根据配置创建推荐引擎，默认取 settings.recommendation_backend。"""

    backend_name = (backend or getattr(settings, "recommendation_backend", "keyword")).lower()
    max_suggestions = getattr(settings, "max_suggestions", 3)
    if backend_name == "llm":
        return LlmRecommendationEngine(
            catalog=catalog,
            provider_client=create_provider(),
            model=getattr(settings, "default_model", "merc-recommend"),
            max_suggestions=max_suggestions,
        )
    return KeywordRecommendationEngine(catalog, max_suggestions=max_suggestions)


__all__ = [
    "RecommendationEngine",
    "KeywordRecommendationEngine",
    "LlmRecommendationEngine",
    "create_engine",
]
