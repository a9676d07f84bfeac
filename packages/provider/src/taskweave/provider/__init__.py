"""TaskWeave Provider -- 推理服务抽象层

packages/provider 的公开接口导出。
"""

# 核心组件
from .client import LiteLLMClient

# 配置
from .config import ProviderConfig, load_provider_config
from .echo_adapter import EchoInferenceClient

# 异常
from .exceptions import (
    ProviderError,
    ProxyUnreachableError,
    StructuredOutputError,
    ToolsNotSupportedError,
)

# 数据模型
from .models import TokenUsage, ToolCall, ToolCallResponse, ToolDefinition
from .protocols import InferenceService


def create_inference_service(config: ProviderConfig | None = None) -> InferenceService:
    """按配置构造推理服务（echo 模式不访问网络）"""
    config = config or load_provider_config()
    if config.llm_mode == "echo":
        return EchoInferenceClient()
    return LiteLLMClient(
        proxy_base_url=config.proxy_base_url,
        proxy_api_key=config.proxy_api_key.get_secret_value(),
        timeout_s=config.timeout_s,
        model=config.model,
        embedding_model=config.embedding_model,
    )


__all__ = [
    "TokenUsage",
    "ToolCall",
    "ToolCallResponse",
    "ToolDefinition",
    "InferenceService",
    "LiteLLMClient",
    "EchoInferenceClient",
    "ProviderConfig",
    "load_provider_config",
    "create_inference_service",
    "ProviderError",
    "ProxyUnreachableError",
    "StructuredOutputError",
    "ToolsNotSupportedError",
]
