"""EntityDetector -- 对话前置的实体识别（不调用模型）

1. 取用户的 名称(小写) -> 实体 ID 注册表
2. 用转义后的名称拼出一个正则（允许所有格 's，忽略大小写）匹配用户消息
3. 对命中的实体做一跳上下文检索，拼成 prompt 片段
"""

import re
from typing import Protocol

from pydantic import BaseModel, Field
from taskweave.core.config import ENTITY_NOTES_SLICE


class EntityContext(BaseModel):
    """实体一跳上下文"""

    entity_id: str
    name: str
    otype: str = Field(default="entity", description="实体类型（person/place/organization 等）")
    summary: str | None = None
    graph_context: str | None = Field(default=None, description="一跳关系描述")
    notes: str | None = None


class EntityDirectory(Protocol):
    """实体目录接口（由领域层实现）"""

    async def get_entity_registry(self, user_id: str) -> dict[str, str]:
        """返回 名称(小写) -> 实体 ID"""
        ...

    async def get_entities_context(
        self,
        user_id: str,
        entity_ids: list[str],
    ) -> list[EntityContext]:
        """一跳上下文检索"""
        ...


class ContextProvider(Protocol):
    """全局上下文接口（知识图谱摘要、用户画像）"""

    async def get_graph_summary(self, user_id: str) -> str:
        ...

    async def get_persona_context(self, user_id: str) -> str:
        ...


class EmptyContextProvider:
    """没有图谱/画像数据源时的默认实现"""

    async def get_graph_summary(self, user_id: str) -> str:
        return ""

    async def get_persona_context(self, user_id: str) -> str:
        return ""


def build_entity_pattern(names: list[str]) -> re.Pattern[str] | None:
    """构建名称匹配正则；无名称时返回 None"""
    cleaned = [name for name in names if name]
    if not cleaned:
        return None
    # 长名称优先，避免 "Ann" 抢先匹配 "Anna"
    escaped = [re.escape(name) for name in sorted(cleaned, key=len, reverse=True)]
    return re.compile(rf"\b({'|'.join(escaped)})(?:'s)?\b", re.IGNORECASE)


class EntityDetector:
    """前置实体识别 + 一跳上下文"""

    def __init__(self, directory: EntityDirectory, notes_slice: int = ENTITY_NOTES_SLICE) -> None:
        self._directory = directory
        self._notes_slice = notes_slice

    async def detect(self, user_id: str, message: str) -> list[str]:
        """返回消息中提到的实体 ID（按首次出现顺序去重）"""
        raw_registry = await self._directory.get_entity_registry(user_id)
        registry = {name.lower(): entity_id for name, entity_id in raw_registry.items()}
        pattern = build_entity_pattern(list(registry))
        if pattern is None:
            return []

        found: list[str] = []
        for match in pattern.finditer(message):
            entity_id = registry.get(match.group(1).lower())
            if entity_id and entity_id not in found:
                found.append(entity_id)
        return found

    async def build_context(self, user_id: str, message: str) -> list[str]:
        """返回命中实体的 prompt 片段"""
        entity_ids = await self.detect(user_id, message)
        if not entity_ids:
            return []

        blocks: list[str] = []
        for entity in await self._directory.get_entities_context(user_id, entity_ids):
            block = f"ENTITY: {entity.name} ({entity.otype})\n"
            if entity.summary:
                block += f"Summary: {entity.summary}\n"
            if entity.graph_context:
                block += f"{entity.graph_context}\n"
            if entity.notes:
                block += f"Notes:\n{entity.notes[: self._notes_slice]}\n"
            blocks.append(block)
        return blocks
