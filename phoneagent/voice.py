# =========================
# FILE: phoneagent/voice.py
# =========================
"""
Voice Arbiter
Deterministic state machine that owns the single speech recognizer and
decides what it is listening for.

    DISABLED ──start()──▶ WAITING_WAKE_WORD ──wake word──▶ (settle) ──▶ LISTENING_COMMAND
                                ▲                                         │
                                │  timeout / error / empty command        │ command text
                                └─────────────────────────────────────────┤
                                ▲                                         ▼
                                └──(resume delay)── task finished ◀── EXECUTING

Only one listening mode is active at a time. While a task runs, wake-word
detection stays suspended until on_task_completed() is called.
"""

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from phoneagent.adb import RootShell
from phoneagent.config import DEFAULT_WAKE_WORDS, VoiceSettings
from phoneagent.device import DeviceController
from phoneagent.events import EventBus, VoiceEvent
from phoneagent.recognizer import SpeechRecognizer
from phoneagent.scheduler import Cancellable, Scheduler, TimerScheduler


class VoiceState(Enum):
    DISABLED = "disabled"
    WAITING_WAKE_WORD = "waiting_wake_word"
    LISTENING_COMMAND = "listening_command"
    PROCESSING_COMMAND = "processing_command"
    EXECUTING = "executing"


@dataclass
class VoiceSession:
    """Short-term voice context (owned by VoiceArbiter only)"""
    mode: VoiceState = VoiceState.DISABLED
    wake_words: List[str] = field(default_factory=lambda: list(DEFAULT_WAKE_WORDS))
    last_activation: Optional[float] = None
    buffer: str = ""
    enabled: bool = False
    task_executing: bool = False
    last_command: str = ""


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text.lower())


class WakeLock:
    """Keeps the phone awake while voice control is on (root, best effort)."""

    def __init__(self, shell: RootShell, tag: str = "phoneagent_voice") -> None:
        self.shell = shell
        self.tag = tag
        self.held = False

    def acquire(self) -> None:
        if self.held:
            return
        self.held = self.shell.execute_silent(f"echo {self.tag} > /sys/power/wake_lock")
        if not self.held:
            print("⚠️ Wake lock not acquired (continuing without it)")

    def release(self) -> None:
        if not self.held:
            return
        self.shell.execute_silent(f"echo {self.tag} > /sys/power/wake_unlock")
        self.held = False


class Feedback:
    """Vibrate the phone and ring the terminal bell. Never raises."""

    def __init__(self, device: Optional[DeviceController] = None, bell: bool = True) -> None:
        self.device = device
        self.bell = bell

    def __call__(self) -> None:
        if self.device is not None:
            try:
                self.device.vibrate(200)
            except RuntimeError as e:
                print(f"⚠️ Vibration failed: {e}")
        if self.bell:
            print("\a", end="", flush=True)


class VoiceArbiter:
    def __init__(
        self,
        recognizer_factory: Callable[[], SpeechRecognizer],
        on_command: Callable[[str], object],
        events: EventBus,
        settings: Optional[VoiceSettings] = None,
        scheduler: Optional[Scheduler] = None,
        wake_lock: Optional[WakeLock] = None,
        feedback: Optional[Callable[[], None]] = None,
    ) -> None:
        self.recognizer_factory = recognizer_factory
        self.on_command = on_command
        self.events = events
        self.settings = settings if settings else VoiceSettings()
        self.scheduler = scheduler if scheduler else TimerScheduler()
        self.wake_lock = wake_lock
        self.feedback = feedback if feedback else (lambda: None)

        self._lock = threading.RLock()
        self.session = VoiceSession()
        self.set_wake_words(self.settings.wake_words)
        self._recognizer: Optional[SpeechRecognizer] = None
        self._timers: Dict[str, Tuple[object, Cancellable]] = {}

    # ==========================================================
    # STATE
    # ==========================================================
    @property
    def state(self) -> VoiceState:
        return self.session.mode

    @property
    def is_enabled(self) -> bool:
        return self.session.enabled

    @property
    def last_command(self) -> str:
        return self.session.last_command

    @property
    def wake_words(self) -> List[str]:
        return list(self.session.wake_words)

    def set_wake_words(self, words: List[str]) -> None:
        cleaned = [w.strip().lower() for w in words if w and w.strip()]
        with self._lock:
            self.session.wake_words = cleaned or list(DEFAULT_WAKE_WORDS)

    def _emit(self, kind: str, message: str = "") -> None:
        self.events.emit(VoiceEvent(kind=kind, message=message))

    # ==========================================================
    # TIMERS
    # ==========================================================
    def _schedule(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        """Replace timer `name`. A fired timer that was cancelled or replaced does nothing."""
        self._cancel_timer(name)
        token = object()

        def fire() -> None:
            with self._lock:
                current = self._timers.get(name)
                if current is None or current[0] is not token:
                    return
                del self._timers[name]
            callback()

        self._timers[name] = (token, self.scheduler.call_later(delay, fire))

    def _cancel_timer(self, name: str) -> None:
        entry = self._timers.pop(name, None)
        if entry is not None:
            entry[1].cancel()

    def _cancel_all_timers(self) -> None:
        for name in list(self._timers):
            self._cancel_timer(name)

    def _stop_recognizer(self) -> None:
        if self._recognizer is not None:
            self._recognizer.stop()

    # ==========================================================
    # START / STOP
    # ==========================================================
    def start(self) -> bool:
        with self._lock:
            if self.session.mode != VoiceState.DISABLED:
                return False
            if self.wake_lock is not None:
                self.wake_lock.acquire()
            try:
                self._recognizer = self.recognizer_factory()
            except RuntimeError as e:
                if self.wake_lock is not None:
                    self.wake_lock.release()
                self._emit("error", f"Voice recognizer unavailable: {e}")
                return False
            self.session.enabled = True
            self.session.mode = VoiceState.WAITING_WAKE_WORD
            self._emit("service_started", ", ".join(self.session.wake_words))
            self._start_wake_word_detection()
        return True

    def stop(self) -> None:
        with self._lock:
            if self.session.mode == VoiceState.DISABLED:
                return
            self._cancel_all_timers()
            self.session.enabled = False
            recognizer, self._recognizer = self._recognizer, None
            if recognizer is not None:
                recognizer.stop()
                recognizer.release()
            if self.wake_lock is not None:
                self.wake_lock.release()
            self.session.mode = VoiceState.DISABLED
            self.session.buffer = ""
            self._emit("service_stopped")

    # ==========================================================
    # WAKE WORD
    # ==========================================================
    def _start_wake_word_detection(self) -> None:
        with self._lock:
            if not self.session.enabled or self._recognizer is None:
                return
            self.session.mode = VoiceState.WAITING_WAKE_WORD
            self.session.buffer = ""
            self._schedule("buffer_reset", self.settings.buffer_reset_interval, self._reset_buffer)
            self._recognizer.start_continuous(self._on_result, self._on_error)

    def _reset_buffer(self) -> None:
        with self._lock:
            if self.session.mode != VoiceState.WAITING_WAKE_WORD:
                return
            self.session.buffer = ""
            self._schedule("buffer_reset", self.settings.buffer_reset_interval, self._reset_buffer)

    def _matched_wake_word(self) -> Optional[str]:
        last = self.session.last_activation
        if last is not None and self.scheduler.now() - last < self.settings.activation_cooldown:
            return None
        heard = _squash(self.session.buffer)
        for word in self.session.wake_words:
            if _squash(word) in heard:
                return word
        return None

    def _on_wake_text(self, text: str) -> None:
        with self._lock:
            if self.session.mode != VoiceState.WAITING_WAKE_WORD:
                return
            self.session.buffer += text
            word = self._matched_wake_word()
            if word is None:
                return
            self._cancel_timer("buffer_reset")
            self.session.buffer = ""
            self.session.last_activation = self.scheduler.now()
            self._stop_recognizer()
            self.feedback()
            self._emit("wake_word_detected", word)
            self._schedule("settle", self.settings.settle_delay, self._begin_command_capture)

    # ==========================================================
    # COMMAND CAPTURE
    # ==========================================================
    def _begin_command_capture(self) -> None:
        with self._lock:
            if not self.session.enabled or self._recognizer is None:
                return
            self.session.mode = VoiceState.LISTENING_COMMAND
            self._schedule("command_timeout", self.settings.command_timeout, self._on_command_timeout)
            self._recognizer.start_listening(self._on_result, self._on_error)

    def _on_command_timeout(self) -> None:
        with self._lock:
            if self.session.mode != VoiceState.LISTENING_COMMAND:
                return
            self._stop_recognizer()
            self._emit("command_timeout", f"No command heard within {self.settings.command_timeout:g}s")
            self._end_command_capture()

    def _end_command_capture(self) -> None:
        """Back to wake words, or back to EXECUTING if a task is still running."""
        if self.session.task_executing:
            self.session.mode = VoiceState.EXECUTING
            return
        self._start_wake_word_detection()

    def _handle_command(self, text: str) -> None:
        command = text.strip()
        with self._lock:
            if self.session.mode != VoiceState.LISTENING_COMMAND:
                return
            self._cancel_timer("command_timeout")
            self._stop_recognizer()
            if not command:
                self._end_command_capture()
                return
            was_executing = self.session.task_executing
            self.session.last_command = command
            self.session.mode = VoiceState.PROCESSING_COMMAND
            self._emit("command_recognized", command)
            self.session.task_executing = True
            self.session.mode = VoiceState.EXECUTING

        accepted = self.on_command(command)
        if accepted is False and not was_executing:
            # nothing will report completion for a rejected task
            self.on_task_completed()

    def cancel_command(self) -> None:
        with self._lock:
            if self.session.mode != VoiceState.LISTENING_COMMAND:
                return
            self._cancel_timer("command_timeout")
            self._stop_recognizer()
            self._end_command_capture()

    def trigger(self) -> bool:
        """Skip the wake word and listen for a command right away."""
        with self._lock:
            if self.session.mode in (VoiceState.DISABLED,
                                     VoiceState.LISTENING_COMMAND,
                                     VoiceState.PROCESSING_COMMAND):
                return False
            self._cancel_timer("buffer_reset")
            self._cancel_timer("settle")
            self._cancel_timer("resume")
            self._stop_recognizer()
            self.feedback()
            self._begin_command_capture()
        return True

    # ==========================================================
    # RECOGNIZER CALLBACKS
    # ==========================================================
    def _on_result(self, text: str) -> None:
        mode = self.session.mode
        if mode == VoiceState.WAITING_WAKE_WORD:
            self._on_wake_text(text)
        elif mode == VoiceState.LISTENING_COMMAND:
            self._handle_command(text)

    def _on_error(self, message: str) -> None:
        with self._lock:
            if self.session.mode != VoiceState.LISTENING_COMMAND:
                # wake-word mode: the recognizer retries on its own
                return
            self._cancel_timer("command_timeout")
            self._stop_recognizer()
            self._emit("error", message)
            self._end_command_capture()

    # ==========================================================
    # TASK NOTIFICATIONS
    # ==========================================================
    def on_task_started(self) -> None:
        with self._lock:
            self.session.task_executing = True
            if not self.session.enabled:
                return
            for name in ("buffer_reset", "settle", "command_timeout", "resume"):
                self._cancel_timer(name)
            self._stop_recognizer()
            self.session.mode = VoiceState.EXECUTING

    def on_task_completed(self) -> None:
        with self._lock:
            self.session.task_executing = False
            if not self.session.enabled:
                return
            self._schedule("resume", self.settings.resume_delay, self._resume)

    def _resume(self) -> None:
        with self._lock:
            if self.session.task_executing or not self.session.enabled:
                return
            if self.session.mode in (VoiceState.LISTENING_COMMAND, VoiceState.PROCESSING_COMMAND):
                return
            self._start_wake_word_detection()
