# =========================
# FILE: phoneagent/events.py
# =========================
"""
Fire-and-forget event stream.

The step loop and the voice arbiter publish here; the CLI (and tests)
subscribe. Delivery happens on a daemon thread so a slow subscriber
never holds up a step.
"""

import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional

from phoneagent.schema import Action

AgentEventKind = Literal[
    "log",
    "warning",
    "error",
    "task_started",
    "task_completed",
    "task_finished",    # always once per run, whatever the outcome
    "step_started",
    "screenshot",
    "action_parsed",
    "thought",
]

VoiceEventKind = Literal[
    "service_started",
    "service_stopped",
    "wake_word_detected",
    "command_recognized",
    "command_timeout",
    "error",
]


@dataclass(frozen=True)
class AgentEvent:
    kind: AgentEventKind
    message: str = ""
    step: int = 0
    action: Optional[Action] = None
    image_b64: Optional[str] = None


@dataclass(frozen=True)
class VoiceEvent:
    kind: VoiceEventKind
    message: str = ""


Subscriber = Callable[[object], None]


class EventBus:
    def __init__(self, name: str = "events") -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(target=self._dispatch_loop, name=name, daemon=True)
        self._thread.start()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def emit(self, event: object) -> None:
        if not self._closed:
            self._queue.put(event)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Block until everything emitted so far has been delivered."""
        if self._closed:
            return True
        marker = threading.Event()
        self._queue.put(marker)
        return marker.wait(timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(None)
        self._thread.join(timeout=2)

    def _dispatch_loop(self) -> None:
        while True:
            event = self._queue.get()
            if event is None:
                break
            if isinstance(event, threading.Event):
                event.set()
                continue
            with self._lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(event)
                except Exception as e:
                    print(f"⚠️ Event subscriber failed: {e}")

