"""单轮对话控制器。

一次 chat 调用的状态流转：AgentProbe -> ModelCall -> Done。

1. AgentProbe：启用了 Agent 且最后一条消息来自 user 时，按注册顺序询问
   每个 Agent；第一个 can_handle 返回 True 且执行成功的 Agent 给出答案，
   不再调用模型。执行失败只记录日志，继续尝试后面的 Agent。
2. ModelCall：没有 Agent 处理时，把请求发送给 /api/chat。
3. Done：向会话历史追加且仅追加一条 assistant 消息，然后返回结果。

会话历史（request.messages）由调用方持有，控制器只做一次追加，
不删除也不重排已有消息。
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from ollama_core.agents.base import Agent
from ollama_core.domain.exceptions import AgentExecutionError, ValidationError
from ollama_core.domain.models import ChatRequest, ChatResponse, Message, ToolCall
from ollama_core.infrastructure.logging.logger import logger
from ollama_core.streaming.line_decoder import AgentReplyStream, LineStream


SendChat = Callable[[ChatRequest], ChatResponse]
OpenChatStream = Callable[[ChatRequest], LineStream[ChatResponse]]
ChatStream = Union[LineStream[ChatResponse], AgentReplyStream[ChatResponse]]


class ChatTurnController:
    def __init__(self, agents: Sequence[Agent], send: SendChat, open_stream: OpenChatStream):
        self._agents = agents
        self._send = send
        self._open_stream = open_stream

    def run(self, request: ChatRequest) -> ChatResponse:
        """执行一次非流式对话轮次。

        Returns:
            Agent 或模型给出的 ChatResponse；其 message 已追加到 request.messages。

        Raises:
            ValidationError: 会话历史为空。
            以及模型调用阶段的 OllamaTimeoutError / RequestFailedError 等。
        """
        log_ctx = self._begin(request)
        start_time = time.time()

        reply = self._probe_agents(request, log_ctx)
        if reply is not None:
            self._append(request, reply, log_ctx, source="agent")
            return self._agent_response(request, reply)

        self._log(
            logging.INFO,
            "Calling model",
            log_ctx,
            model=request.model,
            message_count=len(request.messages),
        )
        response = self._send(request)
        self._append(request, response.message, log_ctx, source="model")
        self._log(
            logging.INFO,
            "Completed chat turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            eval_count=response.eval_count,
        )
        return response

    def run_stream(self, request: ChatRequest) -> ChatStream:
        """执行一次流式对话轮次。

        Agent 给出答案时返回只含一条记录的序列；否则返回 LineStream，
        流读到 done=true 时把拼接后的完整消息追加到历史。
        调用方提前关闭流时不追加任何消息。
        """
        log_ctx = self._begin(request)

        reply = self._probe_agents(request, log_ctx)
        if reply is not None:
            self._append(request, reply, log_ctx, source="agent")
            return AgentReplyStream(self._agent_response(request, reply))

        self._log(
            logging.INFO,
            "Opening model stream",
            log_ctx,
            model=request.model,
            message_count=len(request.messages),
        )
        stream = self._open_stream(request)
        stream.on_complete(
            lambda records: self._append(request, self._assemble(records), log_ctx, source="model")
        )
        return stream

    # ---- AgentProbe ----

    def _probe_agents(self, request: ChatRequest, log_ctx: Dict[str, Any]) -> Optional[Message]:
        if not request.use_agents or not self._agents:
            return None
        last = request.messages[-1]
        # 只有用户输入才交给 Agent 处理
        if last.role != "user":
            self._log(logging.DEBUG, "Skipped agent probe", log_ctx, role=last.role)
            return None
        text = last.content or ""
        for agent in self._agents:
            if not agent.can_handle(text):
                continue
            self._log(logging.INFO, "Agent matched", log_ctx, agent=agent.name)
            try:
                answer = agent.execute(text)
            except Exception as e:
                err = AgentExecutionError(agent.name, str(e))
                self._log(
                    logging.WARNING,
                    f"Agent execution failed: {err.message}",
                    log_ctx,
                    agent=agent.name,
                    code=err.code,
                    error_type=type(e).__name__,
                )
                continue
            return Message(role="assistant", content=answer)
        return None

    # ---- Done ----

    def _append(self, request: ChatRequest, message: Message, log_ctx: Dict[str, Any], source: str) -> None:
        request.messages.append(message)
        self._log(
            logging.INFO,
            "Appended assistant message",
            log_ctx,
            source=source,
            history_length=len(request.messages),
        )

    @staticmethod
    def _agent_response(request: ChatRequest, reply: Message) -> ChatResponse:
        return ChatResponse(message=reply, model=request.model, done=True, done_reason="stop")

    @staticmethod
    def _assemble(records: List[ChatResponse]) -> Message:
        """把流中的增量记录拼成一条完整消息。"""
        role = records[0].message.role if records else "assistant"
        content = "".join(r.message.content for r in records)
        tool_calls: List[ToolCall] = []
        for r in records:
            tool_calls.extend(r.message.tool_calls or [])
        return Message(role=role, content=content, tool_calls=tool_calls or None)

    # ---- 辅助方法 ----

    def _begin(self, request: ChatRequest) -> Dict[str, Any]:
        if not request.messages:
            raise ValidationError("Chat request must contain at least one message")
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "use_agents": request.use_agents,
            "agents": len(self._agents),
        }
        self._log(logging.DEBUG, "Starting chat turn", log_ctx, history_length=len(request.messages))
        return log_ctx

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
