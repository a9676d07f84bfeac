"""InferenceService Protocol -- 推理服务抽象接口

worker、对话循环只依赖此接口；LiteLLMClient 与 EchoInferenceClient 为两种实现。
"""

from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

from .models import ToolCallResponse, ToolDefinition

T = TypeVar("T", bound=BaseModel)


class InferenceService(Protocol):
    """推理服务接口"""

    async def generate_text(self, prompt: str, **opts: Any) -> str:
        """生成文本"""
        ...

    async def generate_json(self, prompt: str, schema: type[T], **opts: Any) -> T:
        """生成并校验结构化输出"""
        ...

    async def generate_with_tools(
        self,
        prompt: str,
        tools: list[ToolDefinition],
        **opts: Any,
    ) -> ToolCallResponse:
        """带工具声明的生成，返回文本和/或工具调用"""
        ...

    async def generate_embeddings(self, text: str, **opts: Any) -> list[float]:
        """生成文本向量"""
        ...
