"""Event Stream 异常体系"""


class StreamError(Exception):
    """事件流基础异常"""


class GroupNotFoundError(StreamError):
    """消费组不存在（需先 create_group）"""

    def __init__(self, stream_key: str, group: str) -> None:
        super().__init__(f"Consumer group {group!r} does not exist on stream {stream_key!r}")
        self.stream_key = stream_key
        self.group = group
