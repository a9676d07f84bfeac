"""Provider 包测试 fixtures"""

from types import SimpleNamespace

import pytest
from taskweave.provider.client import LiteLLMClient


@pytest.fixture
def client() -> LiteLLMClient:
    """创建 LiteLLMClient 实例"""
    return LiteLLMClient(
        proxy_base_url="http://localhost:4000",
        proxy_api_key="sk-test",
        timeout_s=30,
    )


def _completion(
    content: str | None = "Hello!",
    tool_calls: list | None = None,
    prompt_tokens: int = 10,
    completion_tokens: int = 20,
):
    """构造 litellm acompletion 返回（只包含客户端读取的字段）"""
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def _tool_call(name: str, arguments: str, call_id: str = "call_1"):
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


@pytest.fixture
def make_completion():
    return _completion


@pytest.fixture
def make_tool_call():
    return _tool_call
