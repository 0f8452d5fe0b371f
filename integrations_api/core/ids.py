from __future__ import annotations

import os
import threading
import time
from uuid import UUID

_LOCK = threading.Lock()
_last_timestamp_ms = 0
_last_counter = 0
_COUNTER_MAX = 0xFFF


def new_job_id() -> UUID:
    """Return a UUIDv7 that sorts after every id previously returned by this process.

    The 12-bit ``rand_a`` field is used as a counter within one millisecond; when
    it overflows, the timestamp is advanced by one millisecond.
    """
    global _last_timestamp_ms, _last_counter

    with _LOCK:
        timestamp_ms = time.time_ns() // 1_000_000
        if timestamp_ms > _last_timestamp_ms:
            counter = int.from_bytes(os.urandom(2), "big") & 0x3FF
        else:
            timestamp_ms = _last_timestamp_ms
            counter = _last_counter + 1
            if counter > _COUNTER_MAX:
                timestamp_ms += 1
                counter = 0
        _last_timestamp_ms = timestamp_ms
        _last_counter = counter

    rand_b = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)
    value = (timestamp_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= counter << 64
    value |= 0b10 << 62
    value |= rand_b
    return UUID(int=value)
