"""基于 LLM Provider 的推荐引擎。

把商品目录和对话上下文交给模型，要求其返回 JSON：
``{"reply": "...", "product_ids": ["..."]}``，再映射回目录中的 Product。

错误映射：
- Provider 的 NetworkError / RateLimitError / ApiError / 缺少 API key -> UnavailableError
- 响应无法解析或字段类型不对 -> MalformedResponseError
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from merc_core.domain.exceptions import (
    ApiError,
    AssistantError,
    MalformedResponseError,
    NetworkError,
    RateLimitError,
    UnavailableError,
    ValidationError,
)
from merc_core.domain.models import (
    CancelToken,
    ChatMessage,
    ChatRequest,
    ChatResult,
    Message,
    Product,
    RecommendationResult,
    Role,
)
from merc_core.domain.stores import ProductCatalog
from merc_core.infrastructure.logging.logger import logger
from merc_core.prompts import load_system_prompt
from merc_core.providers.base import ProviderClient


_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class LlmRecommendationEngine:
    name = "llm"

    def __init__(
        self,
        catalog: ProductCatalog,
        provider_client: ProviderClient,
        model: str = "merc-recommend",
        max_suggestions: int = 3,
        temperature: float = 0.3,
        locale: str = "es",
    ):
        self._catalog = catalog
        self._provider_client = provider_client
        self._model = model
        self._max_suggestions = max_suggestions
        self._temperature = temperature
        self._locale = locale

    def recommend(
        self,
        context: Sequence[Message],
        cancel_token: Optional[CancelToken] = None,
    ) -> RecommendationResult:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        req = ChatRequest(
            provider=self._provider_client.name,
            model=self._model,
            messages=self._build_messages(context),
            temperature=self._temperature,
            json_mode=True,
        )
        try:
            result = self._provider_client.chat(req)
        except (NetworkError, RateLimitError, ApiError) as e:
            raise UnavailableError(detail=e.message, upstream_code=e.code)
        except AssistantError:
            raise
        except ValidationError as e:
            # 缺少 API key 等配置问题，对用户而言同样是“暂不可用”
            raise UnavailableError(detail=e.message, upstream_code=e.code)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return self._parse_result(result)

    def _build_messages(self, context: Sequence[Message]) -> List[ChatMessage]:
        system_prompt = load_system_prompt("recommend", self._locale).replace(
            "{max_suggestions}", str(self._max_suggestions)
        )
        catalog_lines = [
            json.dumps(
                {"id": p.id, "name": p.name, "price_cents": p.price_cents, "tags": list(p.tags)},
                ensure_ascii=False,
            )
            for p in self._catalog.list_products()
        ]
        messages = [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="system", content="Catálogo:\n" + "\n".join(catalog_lines)),
        ]
        for m in context:
            if m.role is Role.USER:
                messages.append(ChatMessage(role="user", content=m.text))
            elif m.role is Role.ASSISTANT:
                messages.append(ChatMessage(role="assistant", content=m.text))
            else:
                raise ValueError(f"unsupported role: {m.role!r}")
        return messages

    def _parse_result(self, result: ChatResult) -> RecommendationResult:
        if not result.choices:
            raise MalformedResponseError(detail="no choices in provider response")
        data = self._decode(result.choices[0].message.content)

        reply = data.get("reply")
        product_ids = data.get("product_ids", [])
        if not isinstance(reply, str) or not reply.strip():
            raise MalformedResponseError(detail="missing 'reply' text")
        if not isinstance(product_ids, list) or not all(isinstance(pid, str) for pid in product_ids):
            raise MalformedResponseError(detail="'product_ids' must be a list of strings")

        products: List[Product] = []
        seen = set()
        for pid in product_ids:
            if pid in seen:
                continue
            seen.add(pid)
            product = self._catalog.get(pid)
            if product is None:
                logger.log(
                    logging.WARNING,
                    "Model referenced unknown product",
                    extra={"extra": {"product_id": pid, "provider": result.provider}},
                )
                continue
            products.append(product)
        return RecommendationResult(reply_text=reply.strip(), products=tuple(products[: self._max_suggestions]))

    @staticmethod
    def _decode(content: Any) -> Dict[str, Any]:
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise MalformedResponseError(detail=f"content must be a string, got {type(content).__name__}")
        text = content.strip()
        m = _FENCE_RE.match(text)
        if m:
            text = m.group(1)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(detail=f"invalid JSON: {e}")
        if not isinstance(data, dict):
            raise MalformedResponseError(detail="expected a JSON object")
        return data
