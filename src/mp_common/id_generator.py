"""Time-ordered string IDs for orders, disputes and their child rows.

Snowflake-style layout so IDs sort by creation time, which keeps
``ORDER BY id`` usable for history and list endpoints. Each kind of record
gets a short prefix so an id in a log line says what it refers to.
"""

import threading
import time

ORDER_PREFIX = "ord"
DISPUTE_PREFIX = "dsp"
EVIDENCE_PREFIX = "evd"
MESSAGE_PREFIX = "msg"


class SnowflakeIdGenerator:
    """41 bits ms timestamp | 10 bits machine id | 12 bits per-ms sequence."""

    _EPOCH_MS = 1_735_689_600_000  # 2025-01-01T00:00:00Z
    _MACHINE_BITS = 10
    _SEQUENCE_BITS = 12
    _MAX_SEQUENCE = (1 << _SEQUENCE_BITS) - 1

    def __init__(self, machine_id: int = 0) -> None:
        if not (0 <= machine_id < (1 << self._MACHINE_BITS)):
            raise ValueError(f"machine_id must be 0-{(1 << self._MACHINE_BITS) - 1}")
        self._machine_id = machine_id
        self._sequence = 0
        self._last_ms = -1
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            now_ms = int(time.time() * 1000)
            if now_ms == self._last_ms:
                self._sequence = (self._sequence + 1) & self._MAX_SEQUENCE
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond
                    while now_ms <= self._last_ms:
                        now_ms = int(time.time() * 1000)
            else:
                self._sequence = 0
            self._last_ms = now_ms
            return (
                ((now_ms - self._EPOCH_MS) << (self._MACHINE_BITS + self._SEQUENCE_BITS))
                | (self._machine_id << self._SEQUENCE_BITS)
                | self._sequence
            )


_default_generator = SnowflakeIdGenerator()


def generate_id(prefix: str) -> str:
    """``<prefix>_<snowflake>``, e.g. ``ord_8012345678901234``."""
    return f"{prefix}_{_default_generator.next_int()}"
