"""OpenAI 兼容的 chat/completions 适配器。

GLM 与 Kimi 的接口风格一致：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本实现只依赖公共字段：model/messages/temperature/max_tokens/top_p/response_format。
"""

from typing import Any, Dict, List

import httpx

from merc_core.config.settings import settings
from merc_core.domain.exceptions import ApiError, MalformedResponseError, NetworkError, RateLimitError, ValidationError
from merc_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from merc_core.providers.registry import ModelConfig, ProviderConfig


class ChatCompletionsClient:
    """单个 Provider 的客户端，具体厂商由 ProviderConfig 决定。"""

    def __init__(self, provider_cfg: ProviderConfig, cfg=settings):
        self._provider_cfg = provider_cfg
        self._settings = cfg
        self.name = provider_cfg.name

    def chat(self, req: ChatRequest) -> ChatResult:
        api_key = getattr(self._settings, self._provider_cfg.api_key_field, None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(
                code="MISSING_API_KEY",
                message=f"{self._provider_cfg.api_key_field.upper()} not set",
            )
        model_cfg = self._model_config(req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, self._provider_cfg.base_url_field, None) or self._provider_cfg.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code, provider=self.name)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(detail=f"{self.name} returned non-JSON body: {e}")
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    def _model_config(self, logical_name: str) -> ModelConfig:
        try:
            return self._provider_cfg.models[logical_name]
        except KeyError:
            raise ValidationError(
                code="UNKNOWN_MODEL",
                message=f"{self.name} has no logical model {logical_name!r}",
            )

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "temperature": model_cfg.default_temperature if req.temperature is None else req.temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "top_p": req.top_p,
            "stream": False,
        }
        if req.json_mode and model_cfg.supports_json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        if not isinstance(data, dict):
            raise MalformedResponseError(detail=f"{self.name} returned unexpected payload type")
        choices_raw = data.get("choices") or []
        if not isinstance(choices_raw, list):
            raise MalformedResponseError(detail=f"{self.name} returned non-list 'choices'")
        choices: List[ChatChoice] = []
        for i, ch in enumerate(choices_raw):
            if not isinstance(ch, dict):
                raise MalformedResponseError(detail=f"{self.name} choice {i} is not an object")
            msg = ch.get("message") or {}
            if not isinstance(msg, dict):
                raise MalformedResponseError(detail=f"{self.name} choice {i} message is not an object")
            content = msg.get("content")
            if content is None:
                content = ""
            if not isinstance(content, str):
                raise MalformedResponseError(detail=f"{self.name} choice {i} content is not a string")
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role=msg.get("role") or "assistant", content=content),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        if not isinstance(usage_raw, dict):
            usage_raw = {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)
