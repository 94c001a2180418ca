import threading
from typing import Callable, List, Optional

import pytest

from phoneagent.adb import CommandResult
from phoneagent.events import EventBus
from phoneagent.schema import Action, AnalyzeResult


# ---------------------------------------------------------------------------
# Command channel
# ---------------------------------------------------------------------------
class FakeShell:
    """Records commands; answers with the most recently added matching rule."""

    def __init__(self, root: bool = True) -> None:
        self.commands: List[str] = []
        self.rules: list = []
        self.binary: Optional[bytes] = None
        self.root = root

    def on(self, fragment: str, output: str = "", success: bool = True, error: str = "") -> "FakeShell":
        self.rules.append((fragment, CommandResult(success, output, error, 0 if success else 1)))
        return self

    def execute(self, command: str) -> CommandResult:
        self.commands.append(command)
        for fragment, result in reversed(self.rules):
            if fragment in command:
                return result
        return CommandResult(True, "", "", 0)

    def execute_silent(self, command: str) -> bool:
        return self.execute(command).success

    def execute_binary(self, command: str) -> Optional[bytes]:
        self.commands.append(command)
        return self.binary

    def check_root_access(self) -> bool:
        return self.root


# ---------------------------------------------------------------------------
# Device / AI
# ---------------------------------------------------------------------------
class FakeDevice:
    def __init__(self, size=(1080, 2400)) -> None:
        self.size = size
        self.calls: list = []
        self.screenshots: list = []   # queued results; "img" once exhausted
        self.ok = True
        self.launch_ok = True

    def screen_size(self):
        return self.size

    def screenshot_base64(self):
        if self.screenshots:
            return self.screenshots.pop(0)
        return "aW1n"

    def _record(self, *call) -> bool:
        self.calls.append(call)
        return self.ok

    def tap(self, x, y):
        return self._record("tap", x, y)

    def double_tap(self, x, y):
        return self._record("double_tap", x, y)

    def long_press(self, x, y, duration_ms=1000):
        return self._record("long_press", x, y, duration_ms)

    def swipe(self, x1, y1, x2, y2, duration_ms=300):
        return self._record("swipe", x1, y1, x2, y2, duration_ms)

    def swipe_direction(self, direction, distance=500, duration_ms=300):
        return self._record("swipe_direction", direction, distance, duration_ms)

    def input_text(self, text):
        return self._record("input_text", text)

    def press_key(self, keycode):
        return self._record("press_key", keycode)

    def take_screenshot(self):
        return self._record("take_screenshot")

    def launch_app(self, name):
        self.calls.append(("launch_app", name))
        return self.launch_ok


class FakeAIClient:
    """Returns queued AnalyzeResults (or raises queued exceptions), then `default`."""

    def __init__(self, results=None, default: Optional[AnalyzeResult] = None,
                 configured: bool = True) -> None:
        self.results = list(results or [])
        self.default = default or AnalyzeResult(Action.tap(1, 1))
        self.is_configured = configured
        self.calls: list = []
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()

    def analyze(self, image_b64, instruction, width, height, history=()):
        self.calls.append({"image": image_b64, "instruction": instruction,
                           "size": (width, height), "history": list(history)})
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        item = self.results.pop(0) if self.results else self.default
        if isinstance(item, Exception):
            raise item
        return item


# ---------------------------------------------------------------------------
# Voice
# ---------------------------------------------------------------------------
class FakeRecognizer:
    def __init__(self) -> None:
        self.mode: Optional[str] = None   # None | "continuous" | "single"
        self.starts: List[str] = []
        self.stop_count = 0
        self.released = False
        self._on_result: Optional[Callable[[str], None]] = None
        self._on_error: Optional[Callable[[str], None]] = None

    def start_continuous(self, on_result, on_error):
        self.mode = "continuous"
        self.starts.append("continuous")
        self._on_result, self._on_error = on_result, on_error

    def start_listening(self, on_result, on_error):
        self.mode = "single"
        self.starts.append("single")
        self._on_result, self._on_error = on_result, on_error

    def stop(self):
        self.mode = None
        self.stop_count += 1

    def release(self):
        self.released = True

    def say(self, text: str) -> None:
        """Deliver a final result, if currently listening."""
        if self.mode is None:
            return
        if self.mode == "single":
            self.mode = None
        self._on_result(text)

    def fail(self, message: str = "audio error") -> None:
        if self._on_error is not None:
            self._on_error(message)


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Fake clock: callbacks fire only inside advance()."""

    def __init__(self) -> None:
        self.time = 0.0
        self._seq = 0
        self._pending: list = []

    def call_later(self, delay, callback):
        handle = _Handle()
        self._seq += 1
        self._pending.append((self.time + delay, self._seq, callback, handle))
        return handle

    def now(self) -> float:
        return self.time

    def advance(self, seconds: float) -> None:
        target = self.time + seconds
        while True:
            due = [p for p in self._pending if p[0] <= target and not p[3].cancelled]
            if not due:
                break
            item = min(due, key=lambda p: (p[0], p[1]))
            self._pending.remove(item)
            self.time = item[0]
            item[2]()
        self._pending = [p for p in self._pending if not p[3].cancelled]
        self.time = target

    def pending(self) -> int:
        return len([p for p in self._pending if not p[3].cancelled])


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
class EventRecorder:
    def __init__(self) -> None:
        self.events: list = []
        self._lock = threading.Lock()

    def __call__(self, event) -> None:
        with self._lock:
            self.events.append(event)

    def kinds(self) -> List[str]:
        with self._lock:
            return [e.kind for e in self.events]

    def of_kind(self, kind: str) -> list:
        with self._lock:
            return [e for e in self.events if e.kind == kind]


@pytest.fixture
def bus():
    b = EventBus("test-events")
    yield b
    b.close()


@pytest.fixture
def recorder(bus):
    r = EventRecorder()
    bus.subscribe(r)
    return r


@pytest.fixture
def shell():
    return FakeShell()


@pytest.fixture
def fake_device():
    return FakeDevice()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def no_sleep(monkeypatch):
    import phoneagent.device as device_module
    slept = []
    monkeypatch.setattr(device_module.time, "sleep", lambda s: slept.append(s))
    return slept
