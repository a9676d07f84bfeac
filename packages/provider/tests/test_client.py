"""LiteLLMClient 单元测试

Mock litellm.acompletion() / aembedding()，验证四个推理操作、
结构化输出重试、工具调用解析、连接错误包装与健康检查。
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import BaseModel
from taskweave.provider.exceptions import (
    ProviderError,
    ProxyUnreachableError,
    StructuredOutputError,
)
from taskweave.provider.models import ToolDefinition


class Tags(BaseModel):
    tags: list[str]


class TestGenerateText:
    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_successful_call(self, mock_acompletion, client, make_completion):
        mock_acompletion.return_value = make_completion("Hi there")

        text = await client.generate_text("Hello", system_instruction="Be brief")

        assert text == "Hi there"
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["model"] == "main"
        assert kwargs["api_base"] == "http://localhost:4000"
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Hello"},
        ]
        assert "response_format" not in kwargs

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_json_mode(self, mock_acompletion, client, make_completion):
        mock_acompletion.return_value = make_completion("{}")
        await client.generate_text("x", json_mode=True, max_tokens=50)
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_tokens"] == 50

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_connection_error_raises_proxy_unreachable(self, mock_acompletion, client):
        """连接错误抛出 ProxyUnreachableError"""
        mock_acompletion.side_effect = ConnectionError("Connection refused")

        with pytest.raises(ProxyUnreachableError) as exc_info:
            await client.generate_text("test")
        assert "localhost:4000" in str(exc_info.value)

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_timeout_raises_proxy_unreachable(self, mock_acompletion, client):
        mock_acompletion.side_effect = httpx.ConnectTimeout("timeout")
        with pytest.raises(ProxyUnreachableError):
            await client.generate_text("test")

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_other_error_raises_provider_error(self, mock_acompletion, client):
        mock_acompletion.side_effect = ValueError("bad request")
        with pytest.raises(ProviderError) as exc_info:
            await client.generate_text("test")
        assert not isinstance(exc_info.value, ProxyUnreachableError)


class TestGenerateJson:
    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_valid_json(self, mock_acompletion, client, make_completion):
        mock_acompletion.return_value = make_completion('```json\n{"tags": ["work"]}\n```')

        result = await client.generate_json("tag this", Tags)

        assert result == Tags(tags=["work"])
        assert mock_acompletion.await_count == 1

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_retries_once_then_succeeds(self, mock_acompletion, client, make_completion):
        mock_acompletion.side_effect = [
            make_completion("not json"),
            make_completion('[{"tags": ["a"]}]'),
        ]
        result = await client.generate_json("tag this", Tags)
        assert result.tags == ["a"]
        assert mock_acompletion.await_count == 2

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_gives_up_after_two_attempts(self, mock_acompletion, client, make_completion):
        mock_acompletion.return_value = make_completion('{"wrong": 1, "shape": 2}')
        with pytest.raises(StructuredOutputError) as exc_info:
            await client.generate_json("tag this", Tags)
        assert exc_info.value.schema_name == "Tags"
        assert mock_acompletion.await_count == 2


class TestGenerateWithTools:
    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_tool_calls_parsed(
        self, mock_acompletion, client, make_completion, make_tool_call
    ):
        mock_acompletion.return_value = make_completion(
            None,
            tool_calls=[make_tool_call("create_background_task", '{"task_type": "GOAL_CREATE"}')],
        )
        tools = [ToolDefinition(name="create_background_task", description="schedule")]

        response = await client.generate_with_tools("remind me", tools)

        assert response.text is None
        assert response.has_tool_calls
        call = response.function_calls[0]
        assert call.name == "create_background_task"
        assert call.args == {"task_type": "GOAL_CREATE"}
        assert call.call_id == "call_1"
        assert response.token_usage.total_tokens == 30

        sent_tools = mock_acompletion.call_args.kwargs["tools"]
        assert sent_tools[0]["type"] == "function"
        assert sent_tools[0]["function"]["name"] == "create_background_task"

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_text_answer(self, mock_acompletion, client, make_completion):
        mock_acompletion.return_value = make_completion("Sure!")
        response = await client.generate_with_tools("hi", [])
        assert response.text == "Sure!"
        assert response.function_calls == []
        assert "tools" not in mock_acompletion.call_args.kwargs

    @patch("taskweave.provider.client.acompletion", new_callable=AsyncMock)
    async def test_invalid_tool_args_become_empty(
        self, mock_acompletion, client, make_completion, make_tool_call
    ):
        mock_acompletion.return_value = make_completion(
            "", tool_calls=[make_tool_call("lookup", "{not json")]
        )
        response = await client.generate_with_tools("hi", [ToolDefinition(name="lookup")])
        assert response.text is None
        assert response.function_calls[0].args == {}


class TestGenerateEmbeddings:
    @patch("taskweave.provider.client.aembedding", new_callable=AsyncMock)
    async def test_dict_items(self, mock_aembedding, client):
        mock_aembedding.return_value = SimpleNamespace(data=[{"embedding": [0.1, 0.2]}])
        assert await client.generate_embeddings("hello") == [0.1, 0.2]
        assert mock_aembedding.call_args.kwargs["model"] == "embedding"
        assert mock_aembedding.call_args.kwargs["input"] == ["hello"]

    @patch("taskweave.provider.client.aembedding", new_callable=AsyncMock)
    async def test_object_items(self, mock_aembedding, client):
        mock_aembedding.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.3])]
        )
        assert await client.generate_embeddings("hello") == [0.3]

    @patch("taskweave.provider.client.aembedding", new_callable=AsyncMock)
    async def test_connection_error(self, mock_aembedding, client):
        mock_aembedding.side_effect = ConnectionError("refused")
        with pytest.raises(ProxyUnreachableError):
            await client.generate_embeddings("hello")


class TestHealthCheck:
    async def test_unreachable_returns_false(self, client):
        with patch("httpx.AsyncClient.get", side_effect=httpx.ConnectError("refused")):
            assert await client.health_check() is False

    async def test_ok_returns_true(self, client):
        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=httpx.Response(200),
        ):
            assert await client.health_check() is True
