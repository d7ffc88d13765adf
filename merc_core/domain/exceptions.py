"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

助手相关的错误再细分为 AssistantError 子类，它们都带有一条
可直接展示给用户的 message（西班牙语，与前端语言一致）。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由用户重新发送即可重试。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class AssistantError(BusinessError):
    """助手编排过程中的错误，最终写入 ConversationState.error_message。"""

    default_code = "ASSISTANT_ERROR"
    default_message = "Algo salió mal. Inténtalo de nuevo."
    default_status = 500

    def __init__(self, message: str | None = None, *, code: str | None = None, http_status: int | None = None, **extra):
        super().__init__(
            code=code or self.default_code,
            message=message or self.default_message,
            http_status=http_status or self.default_status,
            **extra,
        )


class UnavailableError(AssistantError):
    """推荐后端不可达；用户重新发送即可重试。"""

    default_code = "UNAVAILABLE"
    default_message = "El asistente no está disponible ahora mismo. Inténtalo de nuevo."
    default_status = 503


class MalformedResponseError(AssistantError):
    """后端有响应但内容无法使用，不自动重试。"""

    default_code = "MALFORMED_RESPONSE"
    default_message = "No he podido entender la respuesta del asistente."
    default_status = 502


class UnknownProductError(AssistantError):
    """购物车操作引用了目录中不存在的商品。"""

    default_code = "UNKNOWN_PRODUCT"
    default_message = "Ese producto ya no está disponible."
    default_status = 404


class CancelledError(AssistantError):
    """进行中的编排周期被取消。"""

    default_code = "CANCELLED"
    default_message = "Solicitud cancelada."
    default_status = 499
