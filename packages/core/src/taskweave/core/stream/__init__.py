"""TaskWeave Core Stream -- append-only 事件流与消费组"""

from .errors import GroupNotFoundError, StreamError
from .event_stream import EventStream
from .ids import StreamId, next_stream_id, parse_stream_id

__all__ = [
    "EventStream",
    "GroupNotFoundError",
    "StreamError",
    "StreamId",
    "next_stream_id",
    "parse_stream_id",
]
