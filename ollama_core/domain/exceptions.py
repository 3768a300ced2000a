"""统一业务异常模型。

客户端对外抛出的所有错误都继承自 BusinessError，
调用方可以只捕获基类，也可以按具体类型区分超时、HTTP 错误和解码错误。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "TIMEOUT"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 phase、agent 名称等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接被拒绝、连接中断等（超时除外）。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="NETWORK_ERROR", message=message, http_status=502, **extra)


class OllamaTimeoutError(BusinessError):
    """套接字级别的连接/读/写超时。

    phase 标识超时发生在哪个操作阶段：generating / chatting /
    embedding / listing / deleting。原始异常保存在 __cause__ 中。
    """

    def __init__(self, phase: str, cause: Optional[BaseException] = None):
        super().__init__(
            code="TIMEOUT",
            message=f"Request timed out while {phase}",
            http_status=504,
            phase=phase,
        )
        self.phase = phase
        self.__cause__ = cause


class RequestFailedError(BusinessError):
    """服务端返回非 2xx 状态码。"""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(
            code="REQUEST_FAILED",
            message=f"Unexpected response code: {status_code} {body}".strip(),
            http_status=status_code,
        )
        self.status_code = status_code
        self.body = body


class DecodeError(BusinessError):
    """响应体（或流中的某一行）不是合法 JSON，或流被截断。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="DECODE_ERROR", message=message, http_status=502, **extra)


class EmptyBodyError(BusinessError):
    """2xx 响应却没有任何响应体。"""

    def __init__(self, message: str = "Empty response body"):
        super().__init__(code="EMPTY_BODY", message=message, http_status=502)


class AgentExecutionError(BusinessError):
    """Agent 执行失败，由对话控制器在内部吸收并继续尝试下一个 Agent。"""

    def __init__(self, agent_name: str, message: str):
        super().__init__(code="AGENT_ERROR", message=message, http_status=500, agent=agent_name)
        self.agent_name = agent_name


class ValidationError(BusinessError):
    """参数或配置校验失败。"""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(code=code, message=message)
