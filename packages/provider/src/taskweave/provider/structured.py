"""结构化输出解析 -- 从模型文本中提取 JSON 并按 pydantic schema 校验

模型常见的格式偏差：
- 包在 markdown 代码块里
- schema 期望对象却返回了只含一个对象的数组
- 结果被包在单个 key 下（如 {"result": {...}}）
"""

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")

JSON_INSTRUCTION = "Output strictly valid JSON matching the schema."


def extract_json(raw: str) -> Any:
    """从文本中提取 JSON 值

    Raises:
        json.JSONDecodeError: 找不到合法 JSON
    """
    text = raw.strip()
    match = _JSON_BLOCK_RE.search(text)
    if match:
        text = match.group(0)
    return json.loads(text)


def parse_structured_output(raw: str, schema: type[T]) -> T:
    """解析并校验模型输出

    先按原样校验；失败时尝试解开数组首元素或单 key 包装后再校验。

    Raises:
        json.JSONDecodeError: JSON 非法
        ValidationError: 不符合 schema
    """
    data = extract_json(raw)
    try:
        return schema.model_validate(data)
    except ValidationError:
        unwrapped = _unwrap(data)
        if unwrapped is data:
            raise
        return schema.model_validate(unwrapped)


def _unwrap(data: Any) -> Any:
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    if isinstance(data, dict) and len(data) == 1:
        inner = next(iter(data.values()))
        if isinstance(inner, dict):
            return inner
    return data
