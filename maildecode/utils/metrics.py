"""
Metrics Collection Module
Tracks accepted and rejected messages at the SMTP boundary
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict


@dataclass
class DecodeMetrics:
    """
    Operational counters for the decoding SMTP handler

    Rejections are counted per error class name (e.g. "UnknownTransferEncoding")
    so a spike of one kind stands out.
    """

    messages_accepted: int = 0
    rejections: Counter = field(default_factory=Counter)
    handler_failures: int = 0

    # SECURITY STORY: bounded so a flood of messages cannot grow it forever
    decode_time_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=1000))

    start_time: datetime = field(default_factory=datetime.now)

    def record_accepted(self, time_ms: float) -> None:
        self.messages_accepted += 1
        self.decode_time_ms.append(time_ms)

    def record_rejected(self, error_kind: str) -> None:
        self.rejections[error_kind] += 1

    def record_handler_failure(self) -> None:
        self.handler_failures += 1

    def get_summary(self) -> Dict:
        """
        Summary suitable for logging or export

        Returns:
            Dictionary with counters and decode time statistics
        """
        stats = {}
        if self.decode_time_ms:
            sorted_times = sorted(self.decode_time_ms)
            n = len(sorted_times)
            stats = {
                "avg_ms": sum(sorted_times) / n,
                "min_ms": sorted_times[0],
                "max_ms": sorted_times[-1],
                "p50_ms": sorted_times[n // 2],
                "p95_ms": sorted_times[int(n * 0.95)] if n > 1 else sorted_times[0],
            }

        return {
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
            "messages_accepted": self.messages_accepted,
            "messages_rejected": sum(self.rejections.values()),
            "rejections": dict(self.rejections),
            "handler_failures": self.handler_failures,
            "decode_time_stats": stats,
        }

    def reset(self) -> None:
        """Start a new collection window"""
        self.messages_accepted = 0
        self.rejections.clear()
        self.handler_failures = 0
        self.decode_time_ms.clear()
        self.start_time = datetime.now()
