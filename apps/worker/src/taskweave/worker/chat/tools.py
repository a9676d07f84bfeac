"""ToolRegistry -- 对话循环可调用的工具

工具 = 声明（ToolDefinition，发给模型）+ handler（async (user_id, args) -> 任意可 JSON 化的结果）。
执行结果不论成败都回灌给模型：未知工具与 handler 异常都转成 status=error。
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field
from taskweave.provider import ToolCall, ToolDefinition

log = structlog.get_logger()

TOOL_NOT_FOUND = "Tool not found"

ToolHandler = Callable[[str, dict[str, Any]], Awaitable[Any]]


class AgentTool(BaseModel):
    """声明 + handler"""

    definition: ToolDefinition
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition.name


class ToolExecutionResult(BaseModel):
    """单次工具执行结果"""

    name: str
    status: Literal["success", "error"]
    output: Any = None
    error: str | None = None

    def render(self) -> str:
        """渲染为回灌给模型的一行"""
        if self.status == "success":
            return f"Tool '{self.name}' (Success): {json.dumps(self.output, ensure_ascii=False, default=str)}"
        return f"Tool '{self.name}' (Error): {self.error}"


class ToolRegistry:
    """工具注册表"""

    def __init__(self, tools: list[AgentTool] | None = None) -> None:
        self._tools: dict[str, AgentTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: AgentTool) -> None:
        """注册工具

        Raises:
            ValueError: 同名工具已注册
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def has(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, user_id: str, call: ToolCall) -> ToolExecutionResult:
        """执行一次工具调用，异常转换为 error 结果"""
        tool = self._tools.get(call.name)
        if tool is None:
            log.warning("agent_tool_not_found", user_id=user_id, tool=call.name)
            return ToolExecutionResult(name=call.name, status="error", error=TOOL_NOT_FOUND)

        log.info("agent_tool_executing", user_id=user_id, tool=call.name, args=call.args)
        try:
            output = await tool.handler(user_id, call.args)
        except Exception as e:
            log.warning(
                "agent_tool_failed",
                user_id=user_id,
                tool=call.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ToolExecutionResult(
                name=call.name,
                status="error",
                error=str(e) or type(e).__name__,
            )
        return ToolExecutionResult(name=call.name, status="success", output=output)


class TaskToolInput(BaseModel):
    """create_background_task 工具参数"""

    task_type: str = Field(description="任务类型")
    input_data: dict[str, Any] = Field(default_factory=dict)


def background_task_tool(
    create_task: Callable[[str, str, dict[str, Any]], Awaitable[Any]],
) -> AgentTool:
    """把任务生产者包装为工具，让模型可以安排后台任务

    Args:
        create_task: async (user_id, task_type, input_data) -> Task
    """

    async def handler(user_id: str, args: dict[str, Any]) -> dict[str, Any]:
        params = TaskToolInput.model_validate(args)
        task = await create_task(user_id, params.task_type, params.input_data)
        return {"task_id": task.task_id, "status": task.status.value}

    return AgentTool(
        definition=ToolDefinition(
            name="create_background_task",
            description=(
                "Schedule a background task for the user, such as creating a reminder, "
                "a goal or a daily briefing. Returns the task id and its status."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "task_type": {
                        "type": "string",
                        "description": "One of the supported task types, e.g. REMINDER_CREATE.",
                    },
                    "input_data": {
                        "type": "object",
                        "description": "Task-specific input.",
                    },
                },
                "required": ["task_type"],
            },
        ),
        handler=handler,
    )
