"""Provider 异常体系"""


class ProviderError(Exception):
    """Provider 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ProxyUnreachableError(ProviderError):
    """LiteLLM Proxy 不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, proxy_url: str, original_error: Exception) -> None:
        """
        Args:
            proxy_url: 尝试连接的 Proxy 地址
            original_error: 原始异常
        """
        super().__init__(
            f"LiteLLM Proxy 不可达: {proxy_url} -- {original_error}",
            recoverable=True,
        )
        self.proxy_url = proxy_url
        self.original_error = original_error


class ToolsNotSupportedError(ProviderError):
    """当前推理后端不支持工具调用"""

    def __init__(self, backend: str) -> None:
        super().__init__(f"Tool calling is not supported by backend: {backend}", recoverable=False)
        self.backend = backend


class StructuredOutputError(ProviderError):
    """结构化输出解析失败（JSON 非法或不符合 schema）

    多次尝试后仍失败才抛出。
    """

    def __init__(self, schema_name: str, raw_output: str, original_error: Exception) -> None:
        super().__init__(
            f"Structured output for {schema_name} failed validation: {original_error}",
            recoverable=True,
        )
        self.schema_name = schema_name
        self.raw_output = raw_output
        self.original_error = original_error
