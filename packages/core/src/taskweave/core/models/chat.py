"""Chat Turn Domain Model -- 对话转录条目"""

from pydantic import BaseModel, Field

from .enums import ChatRole


class ChatTurn(BaseModel):
    """对话转录中的一轮"""

    role: ChatRole
    content: str
    timestamp: int = Field(description="UTC epoch 毫秒")
