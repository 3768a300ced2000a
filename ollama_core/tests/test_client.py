import json

import httpx
import pytest

from ollama_core.client import OllamaClient
from ollama_core.domain.exceptions import (
    DecodeError,
    EmptyBodyError,
    NetworkError,
    OllamaTimeoutError,
    RequestFailedError,
)
from ollama_core.domain.models import (
    ChatRequest,
    DeleteRequest,
    EmbedRequest,
    GenerateRequest,
    Message,
    Options,
)


HOST = "http://ollama.test"


class Recorder:
    """MockTransport 的处理函数，按路径返回预设响应并记录请求。"""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes[request.url.path]
        return route(request) if callable(route) else route

    def payload(self, index=-1):
        return json.loads(self.requests[index].content)


class CountingStream(httpx.SyncByteStream):
    def __init__(self, chunks):
        self._chunks = chunks
        self.close_calls = 0

    def __iter__(self):
        yield from self._chunks

    def close(self):
        self.close_calls += 1


def make_client(routes, **kwargs):
    recorder = Recorder(routes)
    client = OllamaClient(HOST, transport=httpx.MockTransport(recorder), **kwargs)
    return client, recorder


def chat_ok(request):
    return httpx.Response(
        200,
        json={
            "model": "qwen2.5:7b",
            "created_at": "2024-01-01T00:00:00Z",
            "message": {"role": "assistant", "content": "Hello!"},
            "done": True,
            "done_reason": "stop",
            "total_duration": 123,
            "eval_count": 3,
        },
    )


class WeatherStub:
    name = "weather"
    description = "天气查询"

    def can_handle(self, text):
        return "weather" in text.lower()

    def execute(self, text):
        return "Weather in Paris: 18°C"


def test_chat_without_agents_appends_model_message():
    client, rec = make_client({"/api/chat": chat_ok})
    req = ChatRequest(model="qwen2.5:7b", messages=[Message(role="user", content="hi")], use_agents=False)
    res = client.chat(req)
    assert len(req.messages) == 2
    assert req.messages[-1].content == "Hello!"
    assert res.message.content == "Hello!"
    assert res.done_reason == "stop"
    assert res.eval_count == 3
    payload = rec.payload()
    assert payload["stream"] is False
    assert "use_agents" not in payload
    assert payload["messages"] == [{"role": "user", "content": "hi"}]


def test_chat_weather_agent_never_contacts_model():
    client, rec = make_client({"/api/chat": chat_ok})
    client.with_agent(WeatherStub())
    req = ChatRequest(model="qwen2.5:7b", messages=[Message(role="user", content="What's the weather in Paris?")])
    res = client.chat(req)
    assert res.message.role == "assistant"
    assert res.message.content == "Weather in Paris: 18°C"
    assert rec.requests == []
    assert len(req.messages) == 2


def test_chat_stream_marks_request_streaming():
    lines = (
        b'{"message":{"role":"assistant","content":"a"},"done":false}\n'
        b'{"message":{"role":"assistant","content":"b"},"done":true,"done_reason":"stop"}\n'
    )
    client, rec = make_client({"/api/chat": httpx.Response(200, content=lines)})
    req = ChatRequest(model="m", messages=[Message(role="user", content="hi")])
    records = list(client.chat_stream(req))
    assert [r.message.content for r in records] == ["a", "b"]
    assert req.stream is True
    assert rec.payload()["stream"] is True
    assert req.messages[-1].content == "ab"


def test_generate_forces_non_streaming():
    body = {"model": "m", "response": "42", "done": True, "done_reason": "stop", "context": [1, 2]}
    client, rec = make_client({"/api/generate": httpx.Response(200, json=body)})
    req = GenerateRequest(model="m", prompt="answer?", stream=True, options=Options(temperature=0.2))
    res = client.generate(req)
    assert res.response == "42"
    assert res.context == [1, 2]
    payload = rec.payload()
    assert payload["stream"] is False
    assert payload["options"] == {"temperature": 0.2}
    assert "system" not in payload


def test_generate_stream_decodes_records():
    lines = (
        b'{"response":"a","done":false}\n'
        b'{"response":"b","done":false}\n'
        b'{"response":"","done":true,"done_reason":"stop","eval_count":2}\n'
    )
    client, rec = make_client({"/api/generate": httpx.Response(200, content=lines)})
    records = list(client.generate_stream(GenerateRequest(model="m", prompt="p")))
    assert len(records) == 3
    assert records[2].done
    assert rec.payload()["stream"] is True


def test_generate_stream_early_close_releases_response_once():
    body = CountingStream(
        [
            b'{"response":"a","done":false}\n',
            b'{"response":"b","done":false}\n',
            b'{"response":"","done":true}\n',
        ]
    )
    client, _ = make_client({"/api/generate": httpx.Response(200, stream=body)})
    stream = client.generate_stream(GenerateRequest(model="m", prompt="p"))
    assert next(stream).response == "a"
    stream.close()
    stream.close()
    assert body.close_calls == 1


def test_embed():
    client, rec = make_client({"/api/embeddings": httpx.Response(200, json={"embedding": [0.1, 0.2, 3]})})
    res = client.embed(EmbedRequest(model="nomic-embed-text", prompt="hello"))
    assert res.embedding == [0.1, 0.2, 3.0]
    assert rec.payload() == {"model": "nomic-embed-text", "prompt": "hello"}


def test_list_models():
    body = {
        "models": [
            {
                "name": "qwen2.5:7b",
                "model": "qwen2.5:7b",
                "size": 4683087332,
                "digest": "abc",
                "modified_at": "2024-01-01T00:00:00Z",
                "details": {"family": "qwen2", "parameter_size": "7.6B", "quantization_level": "Q4_K_M"},
            }
        ]
    }
    client, rec = make_client({"/api/tags": httpx.Response(200, json=body)})
    res = client.list()
    assert rec.requests[0].method == "GET"
    assert res.models[0].name == "qwen2.5:7b"
    assert res.models[0].details.parameter_size == "7.6B"


def test_delete_sends_model_name():
    client, rec = make_client({"/api/delete": httpx.Response(200)})
    assert client.delete(DeleteRequest(model="old-model")) is None
    assert rec.requests[0].method == "DELETE"
    assert rec.payload() == {"model": "old-model"}


def test_non_2xx_is_request_failed_with_status_and_body():
    client, _ = make_client({"/api/generate": httpx.Response(404, text='{"error":"model not found"}')})
    with pytest.raises(RequestFailedError) as exc:
        client.generate(GenerateRequest(model="missing", prompt="p"))
    assert exc.value.status_code == 404
    assert "model not found" in exc.value.body


def test_non_2xx_on_stream_is_request_failed():
    client, _ = make_client({"/api/generate": httpx.Response(500, text="server exploded")})
    with pytest.raises(RequestFailedError) as exc:
        client.generate_stream(GenerateRequest(model="m", prompt="p"))
    assert exc.value.status_code == 500
    assert exc.value.body == "server exploded"


def test_non_2xx_on_chat_leaves_history_untouched():
    client, _ = make_client({"/api/chat": httpx.Response(503, text="busy")})
    req = ChatRequest(model="m", messages=[Message(role="user", content="hi")])
    with pytest.raises(RequestFailedError):
        client.chat(req)
    assert len(req.messages) == 1


def test_empty_body_is_distinct_failure():
    client, _ = make_client({"/api/embeddings": httpx.Response(200, content=b"")})
    with pytest.raises(EmptyBodyError):
        client.embed(EmbedRequest(model="m", prompt="p"))


def test_malformed_json_is_decode_error():
    client, _ = make_client({"/api/tags": httpx.Response(200, content=b"<html>")})
    with pytest.raises(DecodeError):
        client.list()


@pytest.mark.parametrize(
    "path, body, call",
    [
        ("/api/tags", {"models": [1]}, lambda c: c.list()),
        ("/api/embeddings", {"embedding": ["a"]}, lambda c: c.embed(EmbedRequest(model="m", prompt="p"))),
        (
            "/api/chat",
            {"message": "oops", "done": True},
            lambda c: c.chat(ChatRequest(model="m", messages=[Message(role="user", content="hi")])),
        ),
    ],
)
def test_wrongly_shaped_body_is_decode_error(path, body, call):
    client, _ = make_client({path: httpx.Response(200, json=body)})
    with pytest.raises(DecodeError):
        call(client)


def _timeout(request):
    raise httpx.ReadTimeout("timed out", request=request)


@pytest.mark.parametrize(
    "path, call, phase",
    [
        ("/api/generate", lambda c: c.generate(GenerateRequest(model="m", prompt="p")), "generating"),
        ("/api/generate", lambda c: c.generate_stream(GenerateRequest(model="m", prompt="p")), "generating"),
        (
            "/api/chat",
            lambda c: c.chat(ChatRequest(model="m", messages=[Message(role="user", content="hi")])),
            "chatting",
        ),
        (
            "/api/chat",
            lambda c: c.chat_stream(ChatRequest(model="m", messages=[Message(role="user", content="hi")])),
            "chatting",
        ),
        ("/api/embeddings", lambda c: c.embed(EmbedRequest(model="m", prompt="p")), "embedding"),
        ("/api/tags", lambda c: c.list(), "listing"),
        ("/api/delete", lambda c: c.delete(DeleteRequest(model="m")), "deleting"),
    ],
)
def test_read_timeout_maps_to_phase(path, call, phase):
    client, _ = make_client({path: _timeout})
    with pytest.raises(OllamaTimeoutError) as exc:
        call(client)
    assert exc.value.phase == phase
    assert exc.value.code == "TIMEOUT"
    assert isinstance(exc.value.__cause__, httpx.ReadTimeout)


def test_connect_error_is_network_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = make_client({"/api/tags": refuse})
    with pytest.raises(NetworkError) as exc:
        client.list()
    assert not isinstance(exc.value, OllamaTimeoutError)


def test_timeouts_default_and_copies():
    client, _ = make_client({})
    assert (client.connect_timeout, client.read_timeout, client.write_timeout) == (30.0, 30.0, 30.0)
    client.with_agent(WeatherStub())
    slow = client.with_read_timeout(120)
    assert slow is not client
    assert slow.read_timeout == 120
    assert slow.connect_timeout == 30.0
    assert slow.host == HOST
    assert [a.name for a in slow.agents] == ["weather"]
    assert client.read_timeout == 30.0
    assert client.with_connect_timeout(5).connect_timeout == 5
    assert client.with_write_timeout(7).write_timeout == 7


def test_host_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("OLLAMA_HOST", "gpu-box:11434")
    with OllamaClient(transport=httpx.MockTransport(chat_ok)) as client:
        assert client.host == "http://gpu-box:11434"
    with OllamaClient(properties={"ollama.host": "http://prop:1"}) as client:
        assert client.host == "http://prop:1"
