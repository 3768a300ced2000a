"""Ollama HTTP 客户端。

对外暴露 generate / generate_stream / chat / chat_stream / embed / list / delete
七个同步方法，负责：

1. 把请求模型编码成 JSON 并发送到 {host}/api/*。
2. 把 httpx 的异常归类为业务异常：套接字超时 -> OllamaTimeoutError(phase)，
   其他网络错误 -> NetworkError，非 2xx -> RequestFailedError。
3. 单次请求解码为响应模型；流式请求返回按行解码的 LineStream。
4. chat 系列方法交给 ChatTurnController，先尝试 Agent 再调用模型。
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from ollama_core.agents.base import Agent
from ollama_core.agents.turn import ChatStream, ChatTurnController
from ollama_core.config.settings import ConfigSnapshot, Settings, resolve_host, settings as default_settings
from ollama_core.domain import codec
from ollama_core.domain.exceptions import EmptyBodyError, NetworkError, OllamaTimeoutError, RequestFailedError
from ollama_core.domain.models import (
    ChatRequest,
    ChatResponse,
    DeleteRequest,
    EmbedRequest,
    EmbedResponse,
    GenerateRequest,
    GenerateResponse,
    ListResponse,
)
from ollama_core.infrastructure.logging.logger import logger
from ollama_core.streaming.line_decoder import LineStream


# 超时时上报的阶段名
PHASE_GENERATE = "generating"
PHASE_CHAT = "chatting"
PHASE_EMBED = "embedding"
PHASE_LIST = "listing"
PHASE_DELETE = "deleting"


class OllamaClient:
    """Ollama 客户端实现。

    - host: 服务端地址，未显式给出时按 properties > 环境变量 > 配置文件 > 默认值 解析。
    - 连接/读/写超时可分别设置，默认取配置（30 秒）。
    - agents: 按优先级排列的 Agent，先注册先尝试。

    同一个实例内部复用一个 httpx.Client 连接池，用完后调用 close()
    或使用 with 语句释放。
    """

    def __init__(
        self,
        host: Optional[str] = None,
        *,
        connect_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        write_timeout: Optional[float] = None,
        agents: Optional[Sequence[Agent]] = None,
        properties: Optional[Mapping[str, str]] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._settings = settings or default_settings
        self.host = resolve_host(ConfigSnapshot.capture(properties), explicit=host)
        self.connect_timeout = connect_timeout if connect_timeout is not None else self._settings.connect_timeout
        self.read_timeout = read_timeout if read_timeout is not None else self._settings.read_timeout
        self.write_timeout = write_timeout if write_timeout is not None else self._settings.write_timeout
        self._transport = transport
        self._agents: List[Agent] = list(agents or [])
        self._http = httpx.Client(
            base_url=self.host,
            timeout=httpx.Timeout(
                connect=self.connect_timeout,
                read=self.read_timeout,
                write=self.write_timeout,
                pool=self.connect_timeout,
            ),
            transport=transport,
        )
        self._turns = ChatTurnController(self._agents, self._post_chat, self._open_chat_stream)
        logger.info(
            "Ollama client initialized",
            extra={"extra": {"host": self.host, "read_timeout": self.read_timeout}},
        )

    # ---- Agent 与超时配置 ----

    @property
    def agents(self) -> Tuple[Agent, ...]:
        return tuple(self._agents)

    def with_agent(self, agent: Agent) -> "OllamaClient":
        """注册一个 Agent，返回自身以便链式调用。"""

        self._agents.append(agent)
        return self

    def with_connect_timeout(self, seconds: float) -> "OllamaClient":
        return self._copy(connect_timeout=seconds)

    def with_read_timeout(self, seconds: float) -> "OllamaClient":
        return self._copy(read_timeout=seconds)

    def with_write_timeout(self, seconds: float) -> "OllamaClient":
        return self._copy(write_timeout=seconds)

    def _copy(self, **timeouts: float) -> "OllamaClient":
        kwargs: Dict[str, Any] = {
            "connect_timeout": self.connect_timeout,
            "read_timeout": self.read_timeout,
            "write_timeout": self.write_timeout,
        }
        kwargs.update(timeouts)
        return OllamaClient(
            self.host,
            agents=self._agents,
            settings=self._settings,
            transport=self._transport,
            **kwargs,
        )

    # ---- 文本生成 ----

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        payload = codec.encode_generate(request)
        payload["stream"] = False
        data = self._exchange("POST", "/api/generate", PHASE_GENERATE, payload)
        return codec.decode(codec.parse_generate, data)

    def generate_stream(self, request: GenerateRequest) -> LineStream[GenerateResponse]:
        """流式生成，返回惰性序列；提前结束时请调用 close() 或使用 with。"""

        payload = codec.encode_generate(request)
        payload["stream"] = True
        return self._open_stream("/api/generate", PHASE_GENERATE, payload, codec.parse_generate)

    # ---- 对话 ----

    def chat(self, request: ChatRequest) -> ChatResponse:
        """执行一轮对话，结束后 request.messages 恰好多一条 assistant 消息。"""

        return self._turns.run(request)

    def chat_stream(self, request: ChatRequest) -> ChatStream:
        """流式对话。Agent 命中时返回单条记录，否则按行返回模型输出。"""

        return self._turns.run_stream(request)

    def _post_chat(self, request: ChatRequest) -> ChatResponse:
        payload = codec.encode_chat(request)
        payload["stream"] = False
        data = self._exchange("POST", "/api/chat", PHASE_CHAT, payload)
        return codec.decode(codec.parse_chat, data)

    def _open_chat_stream(self, request: ChatRequest) -> LineStream[ChatResponse]:
        request.stream = True
        payload = codec.encode_chat(request)
        return self._open_stream("/api/chat", PHASE_CHAT, payload, codec.parse_chat)

    # ---- 向量与模型管理 ----

    def embed(self, request: EmbedRequest) -> EmbedResponse:
        data = self._exchange("POST", "/api/embeddings", PHASE_EMBED, codec.encode_embed(request))
        return codec.decode(codec.parse_embed, data)

    def list(self) -> ListResponse:
        data = self._exchange("GET", "/api/tags", PHASE_LIST)
        return codec.decode(codec.parse_list, data)

    def delete(self, request: DeleteRequest) -> None:
        response = self._send("DELETE", "/api/delete", PHASE_DELETE, codec.encode_delete(request))
        response.close()

    # ---- HTTP 辅助方法 ----

    def _exchange(
        self,
        method: str,
        path: str,
        phase: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = self._send(method, path, phase, payload)
        try:
            text = response.text
        finally:
            response.close()
        if not text.strip():
            raise EmptyBodyError(f"Empty response body from {path}")
        return codec.loads(text)

    def _open_stream(
        self,
        path: str,
        phase: str,
        payload: Dict[str, Any],
        parse: Callable[[Dict[str, Any]], Any],
    ) -> LineStream:
        response = self._send("POST", path, phase, payload, stream=True)
        return LineStream(response, parse, phase)

    def _send(
        self,
        method: str,
        path: str,
        phase: str,
        payload: Optional[Dict[str, Any]] = None,
        stream: bool = False,
    ) -> httpx.Response:
        """发送请求并完成失败归类，返回 2xx 响应。"""

        request = self._http.build_request(method, path, json=payload)
        logger.debug("Sending request", extra={"extra": {"method": method, "path": path, "stream": stream}})
        try:
            response = self._http.send(request, stream=stream)
        except httpx.TimeoutException as e:
            logger.warning(
                f"Request timed out while {phase}",
                extra={"extra": {"path": path, "error_type": type(e).__name__}},
            )
            raise OllamaTimeoutError(phase, e) from e
        except httpx.RequestError as e:
            logger.warning(f"Request failed: {e}", extra={"extra": {"path": path, "phase": phase}})
            raise NetworkError(str(e), phase=phase) from e

        if response.is_success:
            return response
        try:
            body = self._read_error_body(response)
        finally:
            response.close()
        logger.warning(
            "Unexpected response code",
            extra={"extra": {"path": path, "status": response.status_code}},
        )
        raise RequestFailedError(response.status_code, body)

    @staticmethod
    def _read_error_body(response: httpx.Response) -> str:
        try:
            response.read()
        except httpx.HTTPError:
            return ""
        return response.text

    # ---- 生命周期 ----

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc) -> bool:
        self.close()
        return False
