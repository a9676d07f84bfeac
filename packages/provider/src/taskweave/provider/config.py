"""推理服务配置

环境变量 -> ProviderConfig；非法值（无法转换、越界、未知模式）记录 warning 后回退默认，
不阻塞 worker 启动。
"""

import os
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, SecretStr, ValidationError

log = structlog.get_logger()

LLMMode = Literal["litellm", "echo"]


class ProviderConfig(BaseModel):
    """推理服务配置"""

    proxy_base_url: str = Field(default="http://localhost:4000", description="LiteLLM Proxy 地址")
    # Proxy 的访问密钥，不是上游模型厂商的 key
    proxy_api_key: SecretStr = Field(default=SecretStr(""))
    llm_mode: LLMMode = Field(default="litellm", description="echo 模式不访问网络")
    timeout_s: int = Field(default=30, ge=1, description="单次调用超时（秒）")
    model: str = Field(default="main", description="生成模型 alias（由 Proxy 路由）")
    embedding_model: str = Field(default="embedding", description="向量模型 alias")


# 环境变量 -> (字段, 类型转换)
_PROVIDER_ENV_MAP: dict[str, tuple[str, Any]] = {
    "LITELLM_PROXY_URL": ("proxy_base_url", str),
    "LITELLM_PROXY_KEY": ("proxy_api_key", SecretStr),
    "TASKWEAVE_LLM_MODE": ("llm_mode", str.lower),
    "TASKWEAVE_LLM_MODEL": ("model", str),
    "TASKWEAVE_EMBEDDING_MODEL": ("embedding_model", str),
    "TASKWEAVE_LLM_TIMEOUT_S": ("timeout_s", int),
}


def load_provider_config() -> ProviderConfig:
    """从环境变量加载推理服务配置，逐字段校验"""
    kwargs: dict[str, Any] = {}

    for env_var, (field_name, convert) in _PROVIDER_ENV_MAP.items():
        val = os.environ.get(env_var)
        if not val:
            continue
        try:
            value = convert(val)
            ProviderConfig.model_validate({field_name: value})
        except (ValueError, ValidationError):
            log.warning(
                "invalid_provider_config",
                env_var=env_var,
                value=val,
                fallback=ProviderConfig.model_fields[field_name].default,
            )
            continue
        kwargs[field_name] = value

    return ProviderConfig(**kwargs)
