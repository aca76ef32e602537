"""
CONTRACT: inline
ROLE: Start/stop the recorder from stable signal events and request consent.

INPUTS:
  - Topic: signal.events  Type: SignalEvent
OUTPUTS:
  - Topic: session.state  Type: {"t_ns", "state"}
  - Topic: session.errors  Type: {"t_ns", "event", "error"}
  - Recorder.start() / Recorder.stop(), Notifier.notify(title, body)

CONFIG KEYS:
  - session.enabled: run the controller
  - session.notification.title / session.notification.body

PERF / TIMING:
  - runs on its own worker thread; recorder I/O never blocks the analysis path

FAILURE MODES:
  - recorder start fails -> stay IDLE -> RecorderError -> log recorder_failed
  - recorder stop fails -> force IDLE -> RecorderError -> log recorder_failed
  - notifier fails -> log notify_failed (session already resolved)

LOG EVENTS:
  - module=session.controller, event=recording_started, payload keys=handle
  - module=session.controller, event=recording_stopped, payload keys=artifact
  - module=session.controller, event=recorder_failed, payload keys=action, error
  - module=session.controller, event=notify_failed, payload keys=error
  - module=session.controller, event=reconciled, payload keys=signal_state

TESTS:
  - tests/test_session_controller.py

CONTRACT DETAILS:
# Session states

- IDLE -> RECORDING only on signal_on.
- RECORDING -> IDLE only on signal_off (the debounced silence timeout), a
  reconcile tick or stop().
- Duplicate events are no-ops: no extra start()/stop() calls.
- A RECORDING session whose signal state reads OFF on an idle tick is closed
  as if signal_off had arrived (covers a dropped signal_off).
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Dict, Optional

from dogwhistle.contracts.messages import SessionState, SignalEvent, SignalEventKind, SignalState
from dogwhistle.core.clock import now_ns
from dogwhistle.core.errors import RecorderError
from dogwhistle.core.observable import ObservableValue


DEFAULT_TITLE = "DogWhistle"
DEFAULT_BODY = "Conversation ended. Tap to review and give AI consent."


class SessionController:
    """Owns SessionState; recorder and notifier are duck-typed collaborators.

    recorder: start() -> handle, stop() -> artifact reference
    notifier: notify(title, body)
    """

    def __init__(
        self,
        recorder: Any,
        notifier: Any,
        logger: Optional[Any] = None,
        title: str = DEFAULT_TITLE,
        body: str = DEFAULT_BODY,
    ) -> None:
        self._recorder = recorder
        self._notifier = notifier
        self._logger = logger
        self._title = title
        self._body = body
        self._lock = threading.Lock()
        self._handle: Any = None
        self.state: ObservableValue[SessionState] = ObservableValue(SessionState.IDLE)
        self.needs_consent: ObservableValue[bool] = ObservableValue(False)
        self.recorded_artifact: ObservableValue[Any] = ObservableValue(None)

    @classmethod
    def from_config(cls, config: Dict[str, Any], recorder: Any, notifier: Any, logger: Optional[Any] = None) -> "SessionController":
        note_cfg = config.get("session", {}).get("notification", {})
        return cls(
            recorder,
            notifier,
            logger=logger,
            title=str(note_cfg.get("title", DEFAULT_TITLE)),
            body=str(note_cfg.get("body", DEFAULT_BODY)),
        )

    @property
    def is_recording(self) -> bool:
        return self.state.get() is SessionState.RECORDING

    @property
    def last_artifact(self) -> Any:
        return self.recorded_artifact.get()

    def handle(self, event: SignalEvent) -> bool:
        """Apply one stable event. Returns True when the session state changed."""
        if event.kind is SignalEventKind.SIGNAL_ON:
            return self.on_signal_on()
        if event.kind is SignalEventKind.SIGNAL_OFF:
            return self.on_signal_off()
        return False

    def on_signal_on(self) -> bool:
        with self._lock:
            if self.state.get() is SessionState.RECORDING:
                return False
            try:
                handle = self._recorder.start()
            except Exception as exc:  # noqa: BLE001
                self._log("error", "recorder_failed", {"action": "start", "error": str(exc)})
                raise RecorderError(f"recorder failed to start: {exc}") from exc
            self._handle = handle
            self.state.set(SessionState.RECORDING)
        self._log("info", "recording_started", {"handle": str(handle)})
        return True

    def on_signal_off(self) -> bool:
        with self._lock:
            if self.state.get() is not SessionState.RECORDING:
                return False
            artifact = self._stop_recorder()
            self.recorded_artifact.set(artifact)
            self.needs_consent.set(True)
        self._log("info", "recording_stopped", {"artifact": str(artifact)})
        self._notify()
        return True

    def stop(self) -> None:
        """Stop any active recording without asking for consent."""
        with self._lock:
            if self.state.get() is not SessionState.RECORDING:
                return
            artifact = self._stop_recorder()
            self.recorded_artifact.set(artifact)
        self._log("info", "recording_stopped", {"artifact": str(artifact), "reason": "shutdown"})

    def acknowledge_consent(self) -> None:
        self.needs_consent.set(False)

    def _stop_recorder(self) -> Any:
        # Caller holds the lock. State ends IDLE whether or not stop() succeeds.
        try:
            return self._recorder.stop()
        except Exception as exc:  # noqa: BLE001
            self._log("error", "recorder_failed", {"action": "stop", "error": str(exc)})
            raise RecorderError(f"recorder failed to stop: {exc}") from exc
        finally:
            self._handle = None
            self.state.set(SessionState.IDLE)

    def _notify(self) -> None:
        try:
            self._notifier.notify(self._title, self._body)
        except Exception as exc:  # noqa: BLE001
            self._log("warning", "notify_failed", {"error": str(exc)})

    def _log(self, level: str, event: str, payload: Dict[str, Any]) -> None:
        if self._logger is not None:
            self._logger.emit(level, "session.controller", event, payload)


def start_session_controller(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
    controller: SessionController,
    signal_state: Optional[ObservableValue[SignalState]] = None,
) -> threading.Thread:
    """Drive the controller from signal.events on a worker thread.

    signal.events is drop-oldest, so a signal_off can be lost. When signal_state
    (the debounce machine's state) is given, idle ticks close a recording that
    is still open after the signal went OFF.
    """
    q = bus.subscribe("signal.events")
    controller.state.subscribe(lambda state: bus.publish("session.state", {"t_ns": now_ns(), "state": state.value}))

    def _run() -> None:
        while not stop_event.is_set():
            try:
                event = q.get(timeout=0.1)
            except queue.Empty:
                if signal_state is not None and not stop_event.is_set():
                    _reconcile(bus, controller, signal_state, logger)
                continue
            try:
                controller.handle(event)
            except RecorderError as exc:
                bus.publish("session.errors", {"t_ns": now_ns(), "event": event.kind.value, "error": str(exc)})
        try:
            controller.stop()
        except RecorderError as exc:
            logger.emit("error", "session.controller", "shutdown_failed", {"error": str(exc)})

    thread = threading.Thread(target=_run, name="session-controller", daemon=True)
    thread.start()
    return thread


def _reconcile(bus: Any, controller: SessionController, signal_state: ObservableValue[SignalState], logger: Any) -> None:
    if not controller.is_recording or signal_state.get() is not SignalState.OFF:
        return
    logger.emit("warning", "session.controller", "reconciled", {"signal_state": SignalState.OFF.value})
    try:
        controller.on_signal_off()
    except RecorderError as exc:
        bus.publish("session.errors", {"t_ns": now_ns(), "event": "reconcile", "error": str(exc)})
