# =========================
# FILE: phoneagent/agent_controller.py
# =========================
"""
Main Agent Controller
Runs a task as a loop of steps on a background thread:

    screenshot → AI analyze → parse → execute → record history → repeat

until the model says finish(...), the step cap is hit, the user stops
the task, or an action asks for a human (TakeOver / Interact → PAUSED).

Nothing here prints. Progress goes out as AgentEvents on the EventBus.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from phoneagent.adb import RootShell
from phoneagent.ai_client import AIClient, AIClientError
from phoneagent.config import LoopSettings
from phoneagent.device import DeviceController
from phoneagent.events import AgentEvent, EventBus
from phoneagent.schema import Action, ActionType


class AgentState(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


@dataclass
class TaskRun:
    instruction: str
    step_count: int = 0
    history: List[str] = field(default_factory=list)
    status: AgentState = AgentState.RUNNING
    history_limit: int = 200

    def record(self, entry: str) -> None:
        self.history.append(entry)
        if len(self.history) > self.history_limit:
            del self.history[: len(self.history) - self.history_limit]

    def recent(self, n: int) -> List[str]:
        return self.history[-n:] if n > 0 else []


Handler = Callable[[Action, Optional[TaskRun]], bool]


class AgentController:
    def __init__(
        self,
        device: DeviceController,
        ai: AIClient,
        events: EventBus,
        settings: Optional[LoopSettings] = None,
        shell: Optional[RootShell] = None,
        use_root: bool = True,
    ) -> None:
        self.device = device
        self.ai = ai
        self.events = events
        self.settings = settings if settings else LoopSettings()
        self.shell = shell
        self.use_root = use_root

        self._lock = threading.Lock()
        self._state = AgentState.IDLE
        self._run: Optional[TaskRun] = None
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_log: List[str] = []

        self._handlers: Dict[ActionType, Handler] = {
            ActionType.TAP: lambda a, r: self.device.tap(a.x, a.y),
            ActionType.DOUBLE_TAP: lambda a, r: self.device.double_tap(a.x, a.y),
            ActionType.LONG_PRESS: lambda a, r: self.device.long_press(a.x, a.y, a.duration_ms),
            ActionType.SWIPE: lambda a, r: self.device.swipe(a.x, a.y, a.x2, a.y2, a.duration_ms),
            ActionType.SWIPE_DIRECTIONAL: lambda a, r: self.device.swipe_direction(
                a.direction, a.distance, a.duration_ms),
            ActionType.INPUT_TEXT: lambda a, r: self.device.input_text(a.text or ""),
            ActionType.PRESS_KEY: lambda a, r: self.device.press_key(a.key),
            ActionType.WAIT: self._do_wait,
            ActionType.SCREENSHOT: lambda a, r: self.device.take_screenshot(),
            ActionType.THINK: self._do_think,
            ActionType.COMPLETE: lambda a, r: True,
            ActionType.ERROR: lambda a, r: False,
            ActionType.UNKNOWN: self._do_unknown,
            ActionType.TAKE_OVER: self._do_pause,
            ActionType.INTERACT: self._do_pause,
            ActionType.NOTE: self._do_note,
            ActionType.CALL_API: self._do_call_api,
            ActionType.LAUNCH_APP: self._do_launch,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for: {sorted(m.value for m in missing)}")

    # ==========================================================
    # STATE
    # ==========================================================
    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def current_task(self) -> Optional[str]:
        run = self._run
        return run.instruction if run else None

    @property
    def current_step(self) -> int:
        run = self._run
        return run.step_count if run else 0

    def action_log(self) -> List[str]:
        """History of the current run, or of the last one once it ended."""
        run = self._run
        return list(run.history) if run else list(self._last_log)

    def _emit(self, kind: str, message: str = "", **kwargs) -> None:
        self.events.emit(AgentEvent(kind=kind, message=message, **kwargs))

    # ==========================================================
    # SETUP
    # ==========================================================
    def initialize(self) -> bool:
        """Check privileged access before any task can run."""
        self._state = AgentState.INITIALIZING
        if self.use_root and self.shell is not None and not self.shell.check_root_access():
            self._state = AgentState.ERROR
            self._emit("error", "Root access not available. Grant su to the shell user.")
            return False
        self._state = AgentState.IDLE
        self._emit("log", "Agent ready")
        return True

    # ==========================================================
    # TASK CONTROL
    # ==========================================================
    def start_task(self, instruction: str) -> bool:
        instruction = instruction.strip()
        with self._lock:
            if self._state == AgentState.RUNNING:
                self._emit("warning", "A task is already running")
                return False
            if not self.ai.is_configured:
                self._emit("error", "AI not configured. Set a provider first.")
                return False
            run = TaskRun(instruction=instruction,
                          history_limit=self.settings.log_history_window)
            cancel = threading.Event()
            self._run = run
            self._cancel = cancel
            self._state = AgentState.RUNNING
            self._thread = threading.Thread(
                target=self._run_task, args=(run, cancel), name="agent-task", daemon=True)
            self._thread.start()
        return True

    def stop_task(self) -> None:
        with self._lock:
            if self._state not in (AgentState.RUNNING, AgentState.PAUSED):
                return
            self._cancel.set()
            if self._state == AgentState.PAUSED:
                self._run = None
            self._state = AgentState.IDLE
        self._emit("log", "Task stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the worker thread. True once no run is in flight."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ==========================================================
    # STEP LOOP
    # ==========================================================
    def _run_task(self, run: TaskRun, cancel: threading.Event) -> None:
        s = self.settings
        completed = False
        outcome = "stopped"
        self._emit("task_started", run.instruction)
        try:
            width, height = self.device.screen_size()
            while not completed and run.step_count < s.max_steps:
                if cancel.is_set():
                    self._emit("log", "Task cancelled")
                    break

                run.step_count += 1
                step = run.step_count
                self._emit("step_started", f"Step {step}", step=step)

                image = self.device.screenshot_base64()
                if image is None:
                    self._emit("error", "Screenshot failed", step=step)
                    cancel.wait(s.screenshot_retry_delay)
                    continue
                self._emit("screenshot", step=step, image_b64=image)

                try:
                    result = self.ai.analyze(image, run.instruction, width, height,
                                             run.recent(s.ai_history_window))
                except AIClientError as e:
                    self._emit("error", f"AI request failed: {e}", step=step)
                    cancel.wait(s.ai_retry_delay)
                    continue

                action = result.action
                self._emit("action_parsed", action.description(), step=step, action=action)
                if result.thought:
                    self._emit("thought", result.thought, step=step)

                if cancel.is_set():
                    self._emit("log", "Task cancelled")
                    break

                ok = self.execute_one_action(action, run)
                run.record(f"{action.description()}: {'success' if ok else 'failed'}")

                if action.type == ActionType.COMPLETE:
                    completed = True
                    self._emit("task_completed", action.text or "", step=step)
                    break
                if action.type == ActionType.ERROR:
                    self._emit("error", action.text or "", step=step)
                if run.status == AgentState.PAUSED:
                    break

                cancel.wait(s.action_delay)

            if completed:
                outcome = "completed"
            elif run.status == AgentState.PAUSED:
                outcome = "paused"
            elif not cancel.is_set() and run.step_count >= s.max_steps:
                outcome = "max_steps"
                self._emit("warning", f"Max steps reached ({s.max_steps}) without completing the task")
        except Exception as e:
            outcome = "error"
            self._emit("error", f"Execution error: {e}")
        finally:
            with self._lock:
                # a stopped run that was replaced by a newer one ends silently
                owner = self._run is run
                if owner:
                    self._last_log = list(run.history)
                    if run.status == AgentState.PAUSED and not cancel.is_set():
                        self._state = AgentState.PAUSED
                    else:
                        self._state = AgentState.IDLE
                        self._run = None
            if owner:
                self._emit("task_finished", outcome, step=run.step_count)

    # ==========================================================
    # ACTION DISPATCH
    # ==========================================================
    def execute_one_action(self, action: Action, run: Optional[TaskRun] = None) -> bool:
        """Execute one action on the device. Also used for manual actions."""
        handler = self._handlers[action.type]
        try:
            return bool(handler(action, run))
        except RuntimeError as e:
            self._emit("error", f"{action.description()} failed: {e}")
            return False

    def _do_wait(self, action: Action, run: Optional[TaskRun]) -> bool:
        cancel = self._cancel if run is not None else threading.Event()
        cancel.wait((action.duration_ms or 0) / 1000.0)
        return True

    def _do_think(self, action: Action, run: Optional[TaskRun]) -> bool:
        self._emit("log", action.description())
        return True

    def _do_unknown(self, action: Action, run: Optional[TaskRun]) -> bool:
        self._emit("warning", action.description())
        return False

    def _do_pause(self, action: Action, run: Optional[TaskRun]) -> bool:
        self._emit("warning", action.description())
        if run is not None:
            run.status = AgentState.PAUSED
            with self._lock:
                if self._run is run:
                    self._state = AgentState.PAUSED
        return False

    def _do_note(self, action: Action, run: Optional[TaskRun]) -> bool:
        if run is not None:
            run.record(f"Note: {action.text}")
        return True

    def _do_call_api(self, action: Action, run: Optional[TaskRun]) -> bool:
        # summarisation sub-call not wired yet; the step still counts as done
        self._emit("log", action.description())
        return True

    def _do_launch(self, action: Action, run: Optional[TaskRun]) -> bool:
        ok = self.device.launch_app(action.text or "")
        if not ok:
            self._emit("warning", f"Could not launch app: {action.text}")
        return ok
