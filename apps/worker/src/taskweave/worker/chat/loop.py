"""ToolCallingChatLoop -- 有界的 ReAct 对话循环

流程：
1. 前置实体识别 + 一跳上下文（不调用模型）
2. 拼系统 prompt：实体、图谱摘要、用户画像、最近对话窗口、当前消息
3. 最多 max_iterations 轮：
   - 模型请求工具：逐个执行，把结果作为 "[System] Tool Execution Results" 追加到 prompt，继续
   - 模型给出文本：on_finish(answer) 后返回
   - 两者皆无：返回固定的 "unsure" 回复
4. 轮数耗尽：返回固定的 "couldn't finish" 回复

推理服务的异常在循环边界捕获，返回固定的致歉回复，不向调用方抛出。
"""

import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import structlog
from taskweave.core.config import MAX_CONTEXT_MESSAGES, MAX_REACT_ITERATIONS
from taskweave.core.models import ChatRole, ChatTurn
from taskweave.core.store import ChatMemoryStore
from taskweave.provider import InferenceService, ToolsNotSupportedError

from .entities import ContextProvider, EmptyContextProvider, EntityDetector
from .tools import ToolRegistry

log = structlog.get_logger()

UNSURE_REPLY = "I'm unsure how to proceed. Could you rephrase that?"
BUDGET_EXHAUSTED_REPLY = (
    "I've been working on this for a while but couldn't finish. Please check the recent items."
)
ERROR_REPLY = "I'm sorry, I encountered an error while processing your request."

# 与当前消息内容相同、且在此窗口内写入的历史视为本轮刚持久化的用户消息
_ECHO_WINDOW_MS = 1000

FinishCallback = Callable[[str], Awaitable[None]]


class ToolCallingChatLoop:
    """对话编排器"""

    def __init__(
        self,
        inference: InferenceService,
        tools: ToolRegistry,
        memory: ChatMemoryStore,
        entity_detector: EntityDetector | None = None,
        context_provider: ContextProvider | None = None,
        max_iterations: int = MAX_REACT_ITERATIONS,
        max_context_messages: int = MAX_CONTEXT_MESSAGES,
    ) -> None:
        """
        Raises:
            ToolsNotSupportedError: 推理服务没有 generate_with_tools
        """
        if not callable(getattr(inference, "generate_with_tools", None)):
            raise ToolsNotSupportedError(type(inference).__name__)
        self._inference = inference
        self._tools = tools
        self._memory = memory
        self._entity_detector = entity_detector
        self._context_provider = context_provider or EmptyContextProvider()
        self._max_iterations = max_iterations
        self._max_context_messages = max_context_messages

    async def run(
        self,
        user_id: str,
        message: str,
        *,
        on_finish: FinishCallback | None = None,
    ) -> str:
        """执行一次对话

        Args:
            user_id: 用户 ID
            message: 用户消息
            on_finish: 得到最终回答后、返回前调用

        Returns:
            给用户的回复文本
        """
        try:
            prompt = await self._build_prompt(user_id, message)
            for iteration in range(1, self._max_iterations + 1):
                response = await self._inference.generate_with_tools(
                    prompt,
                    self._tools.definitions(),
                )

                if response.function_calls:
                    results = [
                        await self._tools.execute(user_id, call) for call in response.function_calls
                    ]
                    log.info(
                        "agent_tools_executed",
                        user_id=user_id,
                        iteration=iteration,
                        tools=[r.name for r in results],
                    )
                    prompt += "\n\n[System] Tool Execution Results:\n"
                    prompt += "".join(f"{r.render()}\n" for r in results)
                    prompt += (
                        "\nBased on these results, please provide the final answer to the user "
                        "or call another tool if needed.\n"
                    )
                    continue

                if response.text:
                    if on_finish is not None:
                        await on_finish(response.text)
                    return response.text

                log.warning("agent_empty_response", user_id=user_id, iteration=iteration)
                return UNSURE_REPLY

            log.warning(
                "agent_iteration_budget_exhausted",
                user_id=user_id,
                max_iterations=self._max_iterations,
            )
            return BUDGET_EXHAUSTED_REPLY

        except Exception as e:
            log.error(
                "agent_chat_loop_failed",
                user_id=user_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ERROR_REPLY

    async def _build_prompt(self, user_id: str, message: str) -> str:
        entity_blocks: list[str] = []
        if self._entity_detector is not None:
            entity_blocks = await self._entity_detector.build_context(user_id, message)

        history = await self._memory.get_history(user_id)
        graph_summary = await self._context_provider.get_graph_summary(user_id)
        persona = await self._context_provider.get_persona_context(user_id)

        recent = self._previous_turns(history, message)
        history_text = "\n".join(
            f"{'User' if turn.role == ChatRole.USER else 'Assistant'}: {turn.content}"
            for turn in recent
        )
        entities_text = "\n---\n".join(entity_blocks) or "None mentioned in this message."
        today = datetime.now(UTC).strftime("%a %b %d %Y")

        return f"""You are a supportive and intelligent personal assistant.
Your goal is to be a natural, conversational presence in the user's day.

Today is {today}.

DETECTED ENTITIES (Long-term Memory):
{entities_text}

USER'S GLOBAL CONTEXT:
{graph_summary}

USER'S PERSONA:
{persona}

Recent Conversation History:
{history_text}

Current User Message: {message}

CONVERSATIONAL GUIDELINES:
- Be natural, empathetic, and concise.
- DO NOT list your capabilities unless asked.
- Use the DETECTED ENTITIES context to show you remember their world.
- Match the user's energy level.

RESPONSE FORMATTING:
- Use standard Markdown.
- Bold key information like dates or titles.
"""

    def _previous_turns(self, history: list[ChatTurn], message: str) -> list[ChatTurn]:
        """去掉刚持久化的当前消息，保留最近窗口"""
        cutoff = int(time.time() * 1000) - _ECHO_WINDOW_MS
        previous = [
            turn for turn in history if turn.content != message or turn.timestamp < cutoff
        ]
        return previous[-self._max_context_messages :]
