"""Ollama Core 顶层包。

该包提供本地 Ollama 服务的同步客户端，
包括配置加载、请求/响应模型、按行解码的流式响应、
失败归类以及可插拔的 Agent（例如天气查询）。
"""

from ollama_core.client import OllamaClient
from ollama_core.domain.models import (
    ChatRequest,
    ChatResponse,
    DeleteRequest,
    EmbedRequest,
    GenerateRequest,
    GenerateResponse,
    Message,
)

__all__ = [
    "OllamaClient",
    "ChatRequest",
    "ChatResponse",
    "DeleteRequest",
    "EmbedRequest",
    "GenerateRequest",
    "GenerateResponse",
    "Message",
]
