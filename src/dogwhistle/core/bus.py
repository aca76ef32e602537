"""
CONTRACT: inline
ROLE: In-process pub/sub between the capture, analysis, session and logging threads.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - bus.max_queue_depth: default per-subscriber queue depth
  - bus.topic_depths: optional {topic: depth} overrides

PERF / TIMING:
  - per-topic ordering is preserved for each subscriber
  - publish() never blocks; it is called from the sounddevice callback

FAILURE MODES:
  - subscriber queue full -> drop its oldest message -> drop handler (queue_full)

LOG EVENTS:
  - module=core.bus, event=queue_full, payload keys=topic, depth (emitted by the drop handler in main.run)

TESTS:
  - tests/test_artifacts_and_logging.py covers drop-oldest accounting

CONTRACT DETAILS:
# Topics

- audio.frames: AudioFrame from capture (listener, recording writer)
- signal.events: SignalEvent from the debounce machine (session controller)
- signal.state / session.state: {"t_ns", "state"} for observers
- session.notifications / session.errors: consent prompts and recorder failures
- log.events: LogEvent records (log sink)

# Depths

- signal.events carries rare, must-not-drop edges and gets a deeper queue.
- audio.frames stays shallow: a stale frame is worth less than a fresh one.
- Every topic is still drop-oldest. More than 64 unread signal.events drop the
  oldest edge, which can be a signal_off. The session worker reconciles
  against the debounce state on idle ticks so a recording cannot stay open.
"""

from __future__ import annotations

import queue
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional


DropHandler = Callable[[str, int], None]

TOPIC_DEPTHS: Dict[str, int] = {
    "signal.events": 64,
    "session.errors": 64,
    "log.events": 256,
}


class Bus:
    """Topic fan-out over bounded drop-oldest queues."""

    def __init__(
        self,
        max_queue_depth: int = 8,
        on_drop: Optional[DropHandler] = None,
        topic_depths: Optional[Dict[str, int]] = None,
    ) -> None:
        self._default_depth = max(1, int(max_queue_depth))
        self._topic_depths = dict(TOPIC_DEPTHS)
        if topic_depths:
            self._topic_depths.update({str(k): max(1, int(v)) for k, v in topic_depths.items()})
        self._on_drop = on_drop
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[queue.Queue[Any]]] = defaultdict(list)
        self._drop_counts: Dict[str, int] = defaultdict(int)

    @classmethod
    def from_config(cls, config: Dict[str, Any], on_drop: Optional[DropHandler] = None) -> "Bus":
        bus_cfg = config.get("bus", {})
        if not isinstance(bus_cfg, dict):
            bus_cfg = {}
        depths = bus_cfg.get("topic_depths")
        return cls(
            max_queue_depth=int(bus_cfg.get("max_queue_depth", 8)),
            on_drop=on_drop,
            topic_depths=depths if isinstance(depths, dict) else None,
        )

    def set_drop_handler(self, on_drop: Optional[DropHandler]) -> None:
        self._on_drop = on_drop

    def depth_for(self, topic: str) -> int:
        return self._topic_depths.get(topic, self._default_depth)

    def get_drop_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._drop_counts)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def subscribe(self, topic: str, max_queue_depth: Optional[int] = None) -> queue.Queue[Any]:
        """Return a new queue receiving every later message on topic."""
        depth = self.depth_for(topic) if max_queue_depth is None else max(1, int(max_queue_depth))
        q: queue.Queue[Any] = queue.Queue(maxsize=depth)
        with self._lock:
            self._subscribers[topic].append(q)
        return q

    def unsubscribe(self, topic: str, q: queue.Queue[Any]) -> None:
        with self._lock:
            queues = self._subscribers.get(topic, [])
            if q in queues:
                queues.remove(q)

    def publish(self, topic: str, msg: Any) -> None:
        with self._lock:
            targets = list(self._subscribers.get(topic, []))
        for q in targets:
            if not _offer(q, msg):
                continue
            with self._lock:
                self._drop_counts[topic] += 1
            if self._on_drop is not None:
                self._on_drop(topic, q.maxsize)


def _offer(q: queue.Queue[Any], msg: Any) -> bool:
    """Put msg, evicting the oldest entry when full. Returns True if something was dropped."""
    try:
        q.put_nowait(msg)
        return False
    except queue.Full:
        pass
    try:
        q.get_nowait()
    except queue.Empty:
        pass
    try:
        q.put_nowait(msg)
    except queue.Full:
        # A concurrent publisher refilled the slot; this message is the one lost.
        pass
    return True
