import httpx
import pytest

from merc_core.domain.exceptions import ApiError, MalformedResponseError, NetworkError, RateLimitError, ValidationError
from merc_core.domain.models import ChatMessage, ChatRequest
from merc_core.providers.chat_client import ChatCompletionsClient
from merc_core.providers.registry import GLM_CONFIG, KIMI_CONFIG


class SettingsStub:
    glm_api_key = "g-1234567890"
    kimi_api_key = None
    http_timeout = 1.0
    glm_base_url = "https://open.bigmodel.cn/api/paas/v4"
    kimi_base_url = "https://api.moonshot.cn/v1"


def make_req(json_mode=True):
    return ChatRequest(
        provider="glm",
        model="merc-recommend",
        messages=[ChatMessage(role="user", content="hola")],
        json_mode=json_mode,
    )


def install_client(monkeypatch, response=None, error=None, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **_):
            if captured is not None:
                captured["url"] = url
                captured["payload"] = json
                captured["headers"] = headers
            if error is not None:
                raise error
            return response

    monkeypatch.setattr("httpx.Client", Client)


class Resp:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        return self._data


def test_chat_parses_response(monkeypatch):
    captured = {}
    data = {
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "{\"reply\": \"ok\"}"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
    }
    install_client(monkeypatch, response=Resp(data=data), captured=captured)
    res = ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(make_req())
    assert res.choices[0].message.content == "{\"reply\": \"ok\"}"
    assert res.usage.total_tokens == 5
    assert captured["url"] == "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    assert captured["payload"]["model"] == "glm-4.6"
    assert captured["payload"]["response_format"] == {"type": "json_object"}
    assert captured["headers"]["Authorization"] == "Bearer g-1234567890"


def test_json_mode_off_omits_response_format(monkeypatch):
    captured = {}
    install_client(monkeypatch, response=Resp(data={"choices": []}), captured=captured)
    ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(make_req(json_mode=False))
    assert "response_format" not in captured["payload"]


def test_missing_api_key(monkeypatch):
    install_client(monkeypatch, response=Resp(data={}))
    with pytest.raises(ValidationError) as exc:
        ChatCompletionsClient(KIMI_CONFIG, SettingsStub()).chat(make_req())
    assert exc.value.code == "MISSING_API_KEY"


def test_network_error(monkeypatch):
    install_client(monkeypatch, error=httpx.ConnectError("refused"))
    with pytest.raises(NetworkError):
        ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(make_req())


def test_rate_limit(monkeypatch):
    install_client(monkeypatch, response=Resp(status_code=429))
    with pytest.raises(RateLimitError):
        ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(make_req())


def test_api_error(monkeypatch):
    install_client(monkeypatch, response=Resp(status_code=500, text="internal"))
    with pytest.raises(ApiError) as exc:
        ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(make_req())
    assert exc.value.http_status == 500


@pytest.mark.parametrize(
    "data",
    [
        {"choices": ["oops"]},
        {"choices": [{"message": "oops"}]},
        {"choices": [{"message": {"role": "assistant", "content": 123}}]},
        {"choices": {"message": {}}},
        ["not", "an", "object"],
    ],
)
def test_unusable_payload_is_malformed(monkeypatch, data):
    install_client(monkeypatch, response=Resp(data=data))
    with pytest.raises(MalformedResponseError):
        ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(make_req())


def test_null_content_becomes_empty_string(monkeypatch):
    install_client(monkeypatch, response=Resp(data={"choices": [{"message": {"content": None}}]}))
    res = ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(make_req())
    assert res.choices[0].message.content == ""


def test_zero_temperature_is_kept(monkeypatch):
    captured = {}
    install_client(monkeypatch, response=Resp(data={"choices": []}), captured=captured)
    req = make_req()
    req.temperature = 0.0
    ChatCompletionsClient(GLM_CONFIG, SettingsStub()).chat(req)
    assert captured["payload"]["temperature"] == 0.0
