"""EchoInferenceClient -- 本地开发/测试用的推理服务

不访问网络，行为确定：
- generate_text / generate_with_tools 返回 "Echo: {prompt 最后一行}"，不调用工具
- generate_json 尝试把 prompt 中的 JSON 按 schema 校验，否则使用 schema 默认值
- generate_embeddings 返回基于内容哈希的固定维度向量
"""

import asyncio
import hashlib
import json
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .exceptions import StructuredOutputError
from .models import TokenUsage, ToolCallResponse, ToolDefinition
from .structured import parse_structured_output

T = TypeVar("T", bound=BaseModel)

ECHO_EMBEDDING_DIM = 16


class EchoInferenceClient:
    """回声推理服务"""

    def __init__(self, latency_s: float = 0.0) -> None:
        self._latency_s = latency_s

    async def generate_text(self, prompt: str, **opts: Any) -> str:
        await self._simulate_latency()
        return f"Echo: {self._last_line(prompt)}"

    async def generate_json(self, prompt: str, schema: type[T], **opts: Any) -> T:
        """prompt 中带合法 JSON 时原样校验，否则构造 schema 默认实例

        Raises:
            StructuredOutputError: 两种方式都无法得到合法实例
        """
        await self._simulate_latency()
        try:
            return parse_structured_output(prompt, schema)
        except (json.JSONDecodeError, ValidationError):
            pass
        try:
            return schema()
        except ValidationError as e:
            raise StructuredOutputError(schema.__name__, prompt, e) from e

    async def generate_with_tools(
        self,
        prompt: str,
        tools: list[ToolDefinition],
        **opts: Any,
    ) -> ToolCallResponse:
        text = await self.generate_text(prompt)
        prompt_tokens = len(prompt.split())
        completion_tokens = len(text.split())
        return ToolCallResponse(
            text=text,
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    async def generate_embeddings(self, text: str, **opts: Any) -> list[float]:
        await self._simulate_latency()
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [byte / 255 for byte in digest[:ECHO_EMBEDDING_DIM]]

    async def _simulate_latency(self) -> None:
        if self._latency_s > 0:
            await asyncio.sleep(self._latency_s)

    @staticmethod
    def _last_line(prompt: str) -> str:
        """取 prompt 最后一个非空行，无内容时返回 "(empty)" """
        for line in reversed(prompt.splitlines()):
            if line.strip():
                return line.strip()
        return "(empty)"
