"""按行解码 Ollama 的流式响应。

服务端以 NDJSON 形式返回：每行一个 JSON 对象，最后一行 done=true。
LineStream 每次 next() 只从 httpx 响应中拉取一行并解析，
不会把整个响应体读进内存。

资源释放规则：
- 读到 done=true 的记录、解析失败、传输失败、调用方 close() / 退出 with，
  都会关闭底层 httpx 响应；
- close() 可以重复调用，只有第一次真正生效。
"""

from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

import httpx

from ollama_core.domain.codec import decode, loads
from ollama_core.domain.exceptions import DecodeError, EmptyBodyError, NetworkError, OllamaTimeoutError
from ollama_core.infrastructure.logging.logger import logger


T = TypeVar("T")


class LineStream(Generic[T]):
    """惰性、只进、有限的响应记录序列。

    Args:
        response: 以 stream=True 方式发送得到的 httpx 响应。
        parse: 把一行 JSON dict 转成记录对象的函数。
        phase: 出现超时时上报的阶段名（generating / chatting）。
    """

    def __init__(self, response: httpx.Response, parse: Callable[[Dict[str, Any]], T], phase: str):
        self._response = response
        self._parse = parse
        self._phase = phase
        self._lines: Optional[Iterator[str]] = None
        self._closed = False
        self._records: List[T] = []
        self._on_complete: List[Callable[[List[T]], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def on_complete(self, callback: Callable[[List[T]], None]) -> None:
        """注册完成回调：读到 done=true 的记录后，以全部记录调用一次。"""

        self._on_complete.append(callback)

    def __iter__(self) -> "LineStream[T]":
        return self

    def __next__(self) -> T:
        if self._closed:
            raise StopIteration
        try:
            record = self._pull()
        except BaseException:
            self.close()
            raise
        self._records.append(record)
        if getattr(record, "done", False):
            self._finish()
        return record

    def _pull(self) -> T:
        if self._lines is None:
            self._lines = self._response.iter_lines()
        while True:
            try:
                line = next(self._lines)
            except StopIteration:
                if not self._records:
                    raise EmptyBodyError() from None
                raise DecodeError(
                    "Stream ended before the final record",
                    phase=self._phase,
                    records=len(self._records),
                ) from None
            except httpx.TimeoutException as e:
                raise OllamaTimeoutError(self._phase, e) from e
            except (httpx.RequestError, httpx.StreamError) as e:
                raise NetworkError(str(e), phase=self._phase) from e
            if not line.strip():
                continue
            return decode(self._parse, loads(line))

    def _finish(self) -> None:
        records = list(self._records)
        self.close()
        for callback in self._on_complete:
            callback(records)

    def close(self) -> None:
        """关闭底层响应，重复调用无副作用。"""

        if self._closed:
            return
        self._closed = True
        try:
            self._response.close()
        finally:
            logger.debug(
                "Stream closed",
                extra={"extra": {"phase": self._phase, "records": len(self._records)}},
            )

    def __enter__(self) -> "LineStream[T]":
        return self

    def __exit__(self, *exc) -> bool:
        self.close()
        return False


class AgentReplyStream(Generic[T]):
    """由 Agent 直接给出答案时返回的单元素序列。

    接口与 LineStream 保持一致，调用方无需区分答案来源。
    """

    def __init__(self, record: T):
        self._record: Optional[T] = record
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> "AgentReplyStream[T]":
        return self

    def __next__(self) -> T:
        if self._record is None:
            raise StopIteration
        record, self._record = self._record, None
        self._closed = True
        return record

    def close(self) -> None:
        self._closed = True
        self._record = None

    def __enter__(self) -> "AgentReplyStream[T]":
        return self

    def __exit__(self, *exc) -> bool:
        self.close()
        return False
