"""
CONTRACT: inline
ROLE: Debounce raw per-frame decisions into stable signal_on / signal_off events.

INPUTS:
  - bool per analysed frame (observe)
  - scheduling ticks (poll) and, for the timer policy, a timer thread
OUTPUTS:
  - SignalEvent to listeners
  - ObservableValue[SignalState] for UI/observers

CONFIG KEYS:
  - detector.debounce.policy: timer | silence
  - detector.debounce.silence_s: seconds without a positive frame before OFF

PERF / TIMING:
  - observe() is O(1) and runs on the analysis thread
  - timer policy fires signal_off silence_s after the last positive frame even
    when no further frames arrive

FAILURE MODES:
  - stale timer callback after a newer positive -> ignored (generation check)

LOG EVENTS:
  - module=detect.debounce, event=signal_on, payload keys=seq
  - module=detect.debounce, event=signal_off, payload keys=seq, silent_s
  - module=detect.debounce, event=timer_rescheduled, payload keys=remaining_s

TESTS:
  - tests/test_debounce.py

CONTRACT DETAILS:
# States

- OFF, ON.

# Transitions

- OFF -> ON on the first positive frame; signal_on is emitted once.
- While ON every positive frame refreshes last_true; negatives never flip
  state on their own.
- ON -> OFF when now - last_true >= silence_s with no positive in between;
  signal_off is emitted exactly once.

# Policies

- timer: a one-shot timer is restarted on every positive frame and fires the
  expiry check on its own thread (short UI "flash" indicator, 1.5 s).
- silence: the expiry check runs when a negative frame arrives or on poll()
  ("end of conversation" detection, 4.0 s).

# Serialization

- One lock guards state, last_true, the pending timer and the generation
  counter. Listeners run under the lock so consumers see on/off in order.
- stop() cancels the timer, bumps the generation and forces OFF before it
  returns; it does not emit signal_off.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Union

from dogwhistle.contracts.messages import SignalEvent, SignalEventKind, SignalState
from dogwhistle.core.clock import now_ns, now_s
from dogwhistle.core.observable import ObservableValue


EventListener = Callable[[SignalEvent], Any]


class DebouncePolicy(str, Enum):
    TIMER = "timer"
    SILENCE = "silence"


class DebounceStateMachine:
    def __init__(
        self,
        policy: Union[DebouncePolicy, str] = DebouncePolicy.SILENCE,
        silence_s: float = 4.0,
        clock: Callable[[], float] = now_s,
        timer_factory: Callable[..., Any] = threading.Timer,
        logger: Optional[Any] = None,
    ) -> None:
        if float(silence_s) <= 0:
            raise ValueError("silence_s must be > 0")
        self._policy = DebouncePolicy(policy)
        self._silence_s = float(silence_s)
        self._clock = clock
        self._timer_factory = timer_factory
        self._logger = logger
        self._lock = threading.RLock()
        self._listeners: List[EventListener] = []
        self._last_true: Optional[float] = None
        self._timer: Optional[Any] = None
        self._generation = 0
        self._seq = 0
        self.state: ObservableValue[SignalState] = ObservableValue(SignalState.OFF)

    @classmethod
    def from_config(cls, config: dict, logger: Optional[Any] = None, **kwargs: Any) -> "DebounceStateMachine":
        deb_cfg = config.get("detector", {}).get("debounce", {})
        return cls(
            policy=str(deb_cfg.get("policy", "silence")),
            silence_s=float(deb_cfg.get("silence_s", 4.0)),
            logger=logger,
            **kwargs,
        )

    @property
    def policy(self) -> DebouncePolicy:
        return self._policy

    @property
    def silence_s(self) -> float:
        return self._silence_s

    @property
    def is_on(self) -> bool:
        return self.state.get() is SignalState.ON

    def add_listener(self, callback: EventListener) -> None:
        with self._lock:
            self._listeners.append(callback)

    def observe(self, decision: bool) -> Optional[SignalEvent]:
        with self._lock:
            now = self._clock()
            if decision:
                self._last_true = now
                if self._policy is DebouncePolicy.TIMER:
                    self._restart_timer(self._silence_s)
                if self.state.get() is SignalState.OFF:
                    return self._transition(SignalState.ON, SignalEventKind.SIGNAL_ON, now)
                return None
            return self._expire_if_silent(now)

    def poll(self) -> Optional[SignalEvent]:
        """Run the silence check without a new decision."""
        with self._lock:
            return self._expire_if_silent(self._clock())

    def stop(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._generation += 1
            self._last_true = None
            self.state.set(SignalState.OFF)

    def _expire_if_silent(self, now: float) -> Optional[SignalEvent]:
        if self.state.get() is not SignalState.ON or self._last_true is None:
            return None
        if now - self._last_true < self._silence_s:
            return None
        self._cancel_timer()
        self._generation += 1
        return self._transition(SignalState.OFF, SignalEventKind.SIGNAL_OFF, now)

    def _transition(self, new_state: SignalState, kind: SignalEventKind, now: float) -> SignalEvent:
        self._seq += 1
        event = SignalEvent(kind=kind, t_ns=now_ns(), seq=self._seq)
        self.state.set(new_state)
        if self._logger is not None:
            payload = {"seq": self._seq, "policy": self._policy.value}
            if kind is SignalEventKind.SIGNAL_OFF and self._last_true is not None:
                payload["silent_s"] = round(now - self._last_true, 3)
            self._logger.emit("info", "detect.debounce", kind.value, payload)
        for callback in list(self._listeners):
            callback(event)
        return event

    def _restart_timer(self, delay_s: float) -> None:
        self._cancel_timer()
        self._generation += 1
        timer = self._timer_factory(delay_s, self._on_timer, args=(self._generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            if self.state.get() is not SignalState.ON or self._last_true is None:
                return
            now = self._clock()
            remaining = self._silence_s - (now - self._last_true)
            if remaining > 0:
                # Woke early; the deadline still stands.
                if self._logger is not None:
                    self._logger.emit("debug", "detect.debounce", "timer_rescheduled", {"remaining_s": remaining})
                self._restart_timer(remaining)
                return
            self._expire_if_silent(now)
