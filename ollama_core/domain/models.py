"""Ollama API 的请求与响应数据模型。

本模块定义了客户端在各个接口之间共享的标准数据结构：

- Message / ToolCall / Tool / Image: 对话消息及其附件。
- GenerateRequest / ChatRequest / EmbedRequest / DeleteRequest: 各接口的请求体。
- GenerateResponse / ChatResponse: 流式或非流式返回的响应记录。
- EmbedResponse / ListResponse: 单次请求的结果。

这些模型只描述数据，不关心 JSON 字段名；JSON 与模型之间的转换
统一放在 domain.codec 中完成。
"""

import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union


# 消息角色（与 Ollama /api/chat 的 role 字段一致）
Role = Literal["user", "assistant", "system", "tool"]


@dataclass
class ToolCall:
    """模型发起的一次工具调用。"""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    type: str = "function"


@dataclass
class Tool:
    """可供模型调用的工具定义，parameters 为 JSON Schema。"""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass
class Image:
    """Base64 编码的图片数据。"""

    value: str

    @classmethod
    def from_base64(cls, value: str) -> "Image":
        return cls(value=value)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Image":
        return cls(value=base64.b64encode(data).decode("ascii"))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "Image":
        return cls.from_bytes(Path(path).expanduser().read_bytes())


@dataclass
class Message:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色 user/assistant/system/tool。
    - content: 纯文本内容。
    - images: 多模态模型使用的图片（Base64）。
    - tool_calls: 模型触发工具调用时返回的调用列表。

    消息一旦追加到会话历史中就不再修改。
    """

    role: Role
    content: str = ""
    images: Optional[List[Image]] = None
    tool_calls: Optional[List[ToolCall]] = None


@dataclass
class Options:
    """模型运行参数，值为 None 的字段不会发送给服务端。"""

    # 加载期参数
    numa: Optional[bool] = None
    num_ctx: Optional[int] = None
    num_batch: Optional[int] = None
    num_gpu: Optional[int] = None
    main_gpu: Optional[int] = None
    low_vram: Optional[bool] = None
    f16_kv: Optional[bool] = None
    logits_all: Optional[bool] = None
    vocab_only: Optional[bool] = None
    use_mmap: Optional[bool] = None
    use_mlock: Optional[bool] = None
    embedding_only: Optional[bool] = None
    num_thread: Optional[int] = None
    # 运行期参数
    num_keep: Optional[int] = None
    seed: Optional[int] = None
    num_predict: Optional[int] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    tfs_z: Optional[float] = None
    typical_p: Optional[float] = None
    repeat_last_n: Optional[int] = None
    temperature: Optional[float] = None
    repeat_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    mirostat: Optional[int] = None
    mirostat_tau: Optional[float] = None
    mirostat_eta: Optional[float] = None
    penalize_newline: Optional[bool] = None
    stop: Optional[List[str]] = None


@dataclass
class GenerateRequest:
    """/api/generate 请求。stream 由客户端在发送前根据调用的方法设置。"""

    model: str
    prompt: str = ""
    system: Optional[str] = None
    template: Optional[str] = None
    context: Optional[List[int]] = None
    raw: Optional[bool] = None
    images: Optional[List[Image]] = None
    options: Optional[Options] = None
    format: Optional[str] = None
    keep_alive: Optional[Union[int, str]] = None
    stream: bool = False


@dataclass
class ChatRequest:
    """/api/chat 请求。

    messages 即会话历史，由调用方持有；一次对话轮次结束后，
    控制器会向其中追加且仅追加一条 assistant 消息。
    use_agents 只在客户端内部使用，不会出现在发送的 JSON 中。
    """

    model: str
    messages: List[Message] = field(default_factory=list)
    system: Optional[str] = None
    tools: Optional[List[Tool]] = None
    options: Optional[Options] = None
    format: Optional[str] = None
    keep_alive: Optional[Union[int, str]] = None
    stream: bool = False
    use_agents: bool = True


@dataclass
class EmbedRequest:
    """/api/embeddings 请求。"""

    model: str
    prompt: str
    options: Optional[Options] = None
    keep_alive: Optional[Union[int, str]] = None


@dataclass
class DeleteRequest:
    """/api/delete 请求。"""

    model: str


@dataclass
class GenerateResponse:
    """/api/generate 的一条响应记录。

    流式模式下每行一条，最后一条 done=True，并携带 done_reason 与耗时统计。
    """

    model: str = ""
    created_at: Optional[str] = None
    response: str = ""
    done: bool = False
    done_reason: Optional[str] = None
    context: Optional[List[int]] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None


@dataclass
class ChatResponse:
    """/api/chat 的一条响应记录，结构与 GenerateResponse 类似。"""

    message: Message
    model: str = ""
    created_at: Optional[str] = None
    done: bool = True
    done_reason: Optional[str] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None


@dataclass
class EmbedResponse:
    embedding: List[float] = field(default_factory=list)


@dataclass
class ModelDetails:
    parent_model: Optional[str] = None
    format: Optional[str] = None
    family: Optional[str] = None
    families: Optional[List[str]] = None
    parameter_size: Optional[str] = None
    quantization_level: Optional[str] = None


@dataclass
class ModelInfo:
    """本地已拉取的单个模型信息。"""

    name: str
    model: Optional[str] = None
    size: Optional[int] = None
    digest: Optional[str] = None
    modified_at: Optional[str] = None
    details: Optional[ModelDetails] = None


@dataclass
class ListResponse:
    models: List[ModelInfo] = field(default_factory=list)
