"""流条目 ID 工具 -- 格式 "<ms>-<seq>"

ms 为追加时刻的 epoch 毫秒；同一毫秒内（或时钟回拨时）沿用上一条的 ms，seq 递增。
"""

from typing import NamedTuple


class StreamId(NamedTuple):
    ms: int
    seq: int

    def __str__(self) -> str:
        return f"{self.ms}-{self.seq}"


ZERO_ID = StreamId(0, 0)


def parse_stream_id(value: str) -> StreamId:
    """解析条目 ID；省略 seq 时视为 0（"0" 等价于 "0-0"）

    Raises:
        ValueError: 格式非法
    """
    ms_part, sep, seq_part = value.partition("-")
    try:
        ms = int(ms_part)
        seq = int(seq_part) if sep else 0
    except ValueError:
        raise ValueError(f"Invalid stream ID: {value!r}") from None
    if ms < 0 or seq < 0:
        raise ValueError(f"Invalid stream ID: {value!r}")
    return StreamId(ms, seq)


def next_stream_id(last: StreamId | None, now_ms: int) -> StreamId:
    """生成严格大于 last 的下一个 ID"""
    if last is None or now_ms > last.ms:
        return StreamId(now_ms, 0)
    return StreamId(last.ms, last.seq + 1)
