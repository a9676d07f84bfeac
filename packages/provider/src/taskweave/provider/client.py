"""LiteLLMClient -- 通过 LiteLLM Proxy 的推理服务实现

通过 litellm.acompletion() / litellm.aembedding() 调用 Proxy，
实现 InferenceService 的四个操作。
"""

import json
import time
from typing import Any, TypeVar

import httpx
import structlog
from litellm import acompletion, aembedding
from pydantic import BaseModel, ValidationError

from .exceptions import ProviderError, ProxyUnreachableError, StructuredOutputError
from .models import TokenUsage, ToolCall, ToolCallResponse, ToolDefinition
from .structured import JSON_INSTRUCTION, parse_structured_output

log = structlog.get_logger()

T = TypeVar("T", bound=BaseModel)

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 结构化输出校验失败时的最大尝试次数
JSON_MAX_ATTEMPTS = 2

# 连接类异常类型集合（触发 ProxyUnreachableError）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.TimeoutException,
)


def _is_connection_error(e: Exception) -> bool:
    """判断异常是否为连接类错误（Proxy 不可达）"""
    if isinstance(e, _CONNECTION_ERROR_TYPES):
        return True
    # LiteLLM 的 APIConnectionError 也属于连接类错误
    error_name = type(e).__name__
    return error_name in ("APIConnectionError", "APITimeoutError")


def _parse_usage(response: Any) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    counts = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = getattr(usage, key, 0)
        counts[key] = value if isinstance(value, int) else 0
    return TokenUsage(**counts)


def _parse_tool_args(raw: Any) -> dict[str, Any]:
    """工具参数通常是 JSON 字符串；非法时返回空 dict 交给 handler 校验"""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        log.warning("tool_call_args_invalid_json", raw=str(raw)[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class LiteLLMClient:
    """LiteLLM Proxy 客户端"""

    def __init__(
        self,
        proxy_base_url: str = "http://localhost:4000",
        proxy_api_key: str = "",
        timeout_s: int = 30,
        model: str = "main",
        embedding_model: str = "embedding",
    ) -> None:
        """初始化 LiteLLM Proxy 客户端

        Args:
            proxy_base_url: Proxy 基础 URL
            proxy_api_key: Proxy 访问密钥（LITELLM_PROXY_KEY）
            timeout_s: 请求超时（秒）
            model: 生成模型 alias
            embedding_model: 向量模型 alias

        注意: proxy_api_key 是 Proxy 管理密钥，不是 LLM provider API key。
        """
        self._proxy_base_url = proxy_base_url.rstrip("/")
        self._proxy_api_key = proxy_api_key
        self._timeout_s = timeout_s
        self._model = model
        self._embedding_model = embedding_model

    async def generate_text(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """生成文本

        Raises:
            ProxyUnreachableError: Proxy 连接失败或超时
            ProviderError: Proxy 返回错误
        """
        extra: dict[str, Any] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}
        response = await self._complete(
            self._build_messages(prompt, system_instruction),
            temperature=temperature,
            max_tokens=max_tokens,
            **extra,
        )
        return response.choices[0].message.content or ""

    async def generate_json(
        self,
        prompt: str,
        schema: type[T],
        *,
        system_instruction: str | None = None,
        temperature: float = 0.2,
    ) -> T:
        """生成结构化输出并按 schema 校验

        JSON 非法或校验失败时重试，共 JSON_MAX_ATTEMPTS 次。

        Raises:
            StructuredOutputError: 多次尝试后仍无法得到合法输出
        """
        instruction = (
            f"{system_instruction}\n\nIMPORTANT: {JSON_INSTRUCTION}"
            if system_instruction
            else f"You are a helpful assistant. {JSON_INSTRUCTION}"
        )
        schema_hint = json.dumps(schema.model_json_schema(), ensure_ascii=False)
        full_prompt = f"{prompt}\n\nJSON Schema:\n{schema_hint}"

        for attempt in range(1, JSON_MAX_ATTEMPTS + 1):
            raw = await self.generate_text(
                full_prompt,
                system_instruction=instruction,
                temperature=temperature,
                json_mode=True,
            )
            try:
                return parse_structured_output(raw, schema)
            except (json.JSONDecodeError, ValidationError) as e:
                log.warning(
                    "structured_output_invalid",
                    schema=schema.__name__,
                    attempt=attempt,
                    error_type=type(e).__name__,
                )
                if attempt >= JSON_MAX_ATTEMPTS:
                    raise StructuredOutputError(schema.__name__, raw, e) from e
        raise StructuredOutputError(schema.__name__, "", ValueError("no attempts made"))

    async def generate_with_tools(
        self,
        prompt: str,
        tools: list[ToolDefinition],
        *,
        system_instruction: str | None = None,
        temperature: float = 0.7,
    ) -> ToolCallResponse:
        """带工具声明的生成

        Returns:
            ToolCallResponse；模型请求工具时 function_calls 非空
        """
        extra: dict[str, Any] = {}
        if tools:
            extra["tools"] = [tool.to_openai_tool() for tool in tools]
        response = await self._complete(
            self._build_messages(prompt, system_instruction),
            temperature=temperature,
            **extra,
        )

        message = response.choices[0].message
        calls = [
            ToolCall(
                name=call.function.name,
                args=_parse_tool_args(call.function.arguments),
                call_id=getattr(call, "id", None),
            )
            for call in (getattr(message, "tool_calls", None) or [])
        ]
        return ToolCallResponse(
            text=message.content or None,
            function_calls=calls,
            token_usage=_parse_usage(response),
        )

    async def generate_embeddings(self, text: str) -> list[float]:
        """生成文本向量"""
        start_time = time.monotonic()
        try:
            response = await aembedding(
                model=self._embedding_model,
                input=[text],
                api_base=self._proxy_base_url,
                api_key=self._proxy_api_key or "no-key",
                timeout=self._timeout_s,
            )
        except Exception as e:
            raise self._wrap_error(e, self._embedding_model, start_time) from e

        item = response.data[0]
        embedding = item["embedding"] if isinstance(item, dict) else item.embedding
        return list(embedding)

    async def health_check(self) -> bool:
        """检查 LiteLLM Proxy 可达性

        发送 GET {proxy_base_url}/health/liveliness 请求。

        Returns:
            True 如果 Proxy 活跃，False 如果不可达或异常

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        url = f"{self._proxy_base_url}/health/liveliness"
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.get(url, timeout=HEALTH_CHECK_TIMEOUT_S)
                return resp.status_code == 200
        except Exception as e:
            log.debug("health_check_failed", url=url, error=str(e))
            return False

    async def _complete(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> Any:
        """调用 litellm.acompletion，统一计时、日志与异常包装"""
        start_time = time.monotonic()
        call_kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "api_base": self._proxy_base_url,
            "api_key": self._proxy_api_key or "no-key",
            "temperature": temperature,
            "timeout": self._timeout_s,
            **kwargs,
        }
        if max_tokens is not None:
            call_kwargs["max_tokens"] = max_tokens

        log.debug(
            "litellm_call_start",
            model=self._model,
            message_count=len(messages),
            tool_count=len(kwargs.get("tools", [])),
        )
        try:
            response = await acompletion(**call_kwargs)
        except Exception as e:
            raise self._wrap_error(e, self._model, start_time) from e

        usage = _parse_usage(response)
        log.info(
            "litellm_call_completed",
            model=self._model,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            total_tokens=usage.total_tokens,
        )
        return response

    def _wrap_error(self, e: Exception, model: str, start_time: float) -> ProviderError:
        """区分连接类错误与业务错误"""
        log.error(
            "litellm_call_failed",
            model=model,
            error=str(e),
            error_type=type(e).__name__,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        if _is_connection_error(e):
            return ProxyUnreachableError(proxy_url=self._proxy_base_url, original_error=e)
        return ProviderError(message=f"LLM 调用失败: {e}", recoverable=True)

    @staticmethod
    def _build_messages(prompt: str, system_instruction: str | None) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})
        return messages
