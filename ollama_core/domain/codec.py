"""请求/响应模型与 Ollama JSON 之间的转换层。

- encode_*: 把请求 dataclass 转成发送给服务端的 JSON dict（去掉 None 字段）。
- parse_*: 把服务端返回的 JSON dict 转成响应 dataclass。
- loads / decode: 解析 JSON 文本并转成记录，失败统一抛出 DecodeError。

客户端内部字段（例如 ChatRequest.use_agents）不会出现在请求体中。
"""

import json
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ollama_core.domain.exceptions import DecodeError
from ollama_core.domain.models import (
    ChatRequest,
    ChatResponse,
    DeleteRequest,
    EmbedRequest,
    EmbedResponse,
    GenerateRequest,
    GenerateResponse,
    Image,
    ListResponse,
    Message,
    ModelDetails,
    ModelInfo,
    Options,
    Tool,
    ToolCall,
)


T = TypeVar("T")


# ---- 编码 ----


def encode_generate(req: GenerateRequest) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "model": req.model,
        "prompt": req.prompt,
        "system": req.system,
        "template": req.template,
        "context": req.context,
        "raw": req.raw,
        "images": _encode_images(req.images),
        "options": _encode_options(req.options),
        "format": req.format,
        "keep_alive": req.keep_alive,
        "stream": req.stream,
    }
    return _drop_none(payload)


def encode_chat(req: ChatRequest) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "model": req.model,
        "messages": [encode_message(m) for m in req.messages],
        "system": req.system,
        "tools": [_encode_tool(t) for t in req.tools] if req.tools else None,
        "options": _encode_options(req.options),
        "format": req.format,
        "keep_alive": req.keep_alive,
        "stream": req.stream,
    }
    return _drop_none(payload)


def encode_embed(req: EmbedRequest) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "model": req.model,
        "prompt": req.prompt,
        "options": _encode_options(req.options),
        "keep_alive": req.keep_alive,
    }
    return _drop_none(payload)


def encode_delete(req: DeleteRequest) -> Dict[str, Any]:
    return {"model": req.model}


def encode_message(message: Message) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"role": message.role, "content": message.content or ""}
    if message.images:
        payload["images"] = _encode_images(message.images)
    if message.tool_calls:
        payload["tool_calls"] = [
            {"function": {"name": call.name, "arguments": call.arguments}}
            for call in message.tool_calls
        ]
    return payload


def _encode_tool(tool: Tool) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


def _encode_options(options: Optional[Options]) -> Optional[Dict[str, Any]]:
    if options is None:
        return None
    return _drop_none(asdict(options)) or None


def _encode_images(images: Optional[List[Image]]) -> Optional[List[str]]:
    if not images:
        return None
    return [img.value for img in images]


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


# ---- 解码 ----


def loads(text: str) -> Dict[str, Any]:
    """解析一个 JSON 对象，非对象或语法错误都视为解码失败。"""

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Malformed JSON: {e}", snippet=text[:200]) from e
    if not isinstance(data, dict):
        raise DecodeError(f"Expected JSON object, got {type(data).__name__}", snippet=text[:200])
    return data


def decode(parse: Callable[[Dict[str, Any]], T], data: Dict[str, Any]) -> T:
    """用 parse_* 把 JSON 对象转成记录；字段类型不符同样视为解码失败。"""

    try:
        return parse(data)
    except (AttributeError, TypeError, ValueError) as e:
        raise DecodeError(f"Unexpected response shape: {e}", snippet=json.dumps(data)[:200]) from e


def parse_generate(data: Dict[str, Any]) -> GenerateResponse:
    return GenerateResponse(
        model=data.get("model") or "",
        created_at=data.get("created_at"),
        response=data.get("response") or "",
        done=bool(data.get("done", False)),
        done_reason=data.get("done_reason"),
        context=data.get("context"),
        **_metrics(data),
    )


def parse_chat(data: Dict[str, Any]) -> ChatResponse:
    return ChatResponse(
        message=parse_message(data.get("message") or {}),
        model=data.get("model") or "",
        created_at=data.get("created_at"),
        done=bool(data.get("done", False)),
        done_reason=data.get("done_reason"),
        **_metrics(data),
    )


def parse_message(payload: Dict[str, Any]) -> Message:
    """解析 message 字段，兼容 tool_calls。"""

    tool_calls: List[ToolCall] = []
    for call in payload.get("tool_calls") or []:
        func = call.get("function") or {}
        tool_calls.append(
            ToolCall(
                name=func.get("name") or call.get("name") or "",
                arguments=_parse_arguments(func.get("arguments")),
                id=call.get("id"),
            )
        )
    images = payload.get("images")
    return Message(
        role=payload.get("role") or "assistant",
        content=payload.get("content") or "",
        images=[Image(value=v) for v in images] if images else None,
        tool_calls=tool_calls or None,
    )


def parse_embed(data: Dict[str, Any]) -> EmbedResponse:
    return EmbedResponse(embedding=[float(x) for x in data.get("embedding") or []])


def parse_list(data: Dict[str, Any]) -> ListResponse:
    models: List[ModelInfo] = []
    for item in data.get("models") or []:
        details_raw = item.get("details")
        details = None
        if isinstance(details_raw, dict):
            details = ModelDetails(
                parent_model=details_raw.get("parent_model"),
                format=details_raw.get("format"),
                family=details_raw.get("family"),
                families=details_raw.get("families"),
                parameter_size=details_raw.get("parameter_size"),
                quantization_level=details_raw.get("quantization_level"),
            )
        models.append(
            ModelInfo(
                name=item.get("name") or "",
                model=item.get("model"),
                size=item.get("size"),
                digest=item.get("digest"),
                modified_at=item.get("modified_at"),
                details=details,
            )
        )
    return ListResponse(models=models)


def _metrics(data: Dict[str, Any]) -> Dict[str, Optional[int]]:
    # 耗时统计只在 done=True 的记录上出现
    keys = (
        "total_duration",
        "load_duration",
        "prompt_eval_count",
        "prompt_eval_duration",
        "eval_count",
        "eval_duration",
    )
    return {k: data.get(k) for k in keys}


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"_raw": raw}
        return parsed if isinstance(parsed, dict) else {"_raw": raw}
    return {}
