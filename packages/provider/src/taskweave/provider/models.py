"""数据模型 -- 工具定义、工具调用、工具调用响应、Token 使用"""

from typing import Any

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Token 使用统计

    key 命名对齐 OpenAI/LiteLLM 行业标准：
    prompt_tokens / completion_tokens / total_tokens
    """

    prompt_tokens: int = Field(default=0, ge=0, description="输入 token 数")
    completion_tokens: int = Field(default=0, ge=0, description="输出 token 数")
    total_tokens: int = Field(default=0, ge=0, description="总 token 数")


class ToolDefinition(BaseModel):
    """暴露给模型的工具声明（JSON Schema 参数）"""

    name: str = Field(description="工具名，全局唯一")
    description: str = Field(default="", description="给模型看的用途说明")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="参数 JSON Schema",
    )

    def to_openai_tool(self) -> dict[str, Any]:
        """转换为 OpenAI/LiteLLM tools 参数格式"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolCall(BaseModel):
    """模型请求的一次工具调用"""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    call_id: str | None = Field(default=None, description="后端分配的调用 ID")


class ToolCallResponse(BaseModel):
    """generate_with_tools 的返回

    text 与 function_calls 可同时为空（模型既没回答也没调用工具）。
    """

    text: str | None = None
    function_calls: list[ToolCall] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.function_calls)
