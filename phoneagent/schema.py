# =========================
# FILE: phoneagent/schema.py
# =========================
from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Optional, Union, Literal

Direction = Literal["up", "down", "left", "right"]


class ActionType(Enum):
    TAP = "tap"
    DOUBLE_TAP = "double_tap"
    LONG_PRESS = "long_press"
    SWIPE = "swipe"
    SWIPE_DIRECTIONAL = "swipe_directional"
    INPUT_TEXT = "input_text"
    PRESS_KEY = "press_key"
    WAIT = "wait"
    SCREENSHOT = "screenshot"
    THINK = "think"
    COMPLETE = "complete"
    ERROR = "error"
    UNKNOWN = "unknown"
    TAKE_OVER = "take_over"
    INTERACT = "interact"
    NOTE = "note"
    CALL_API = "call_api"
    LAUNCH_APP = "launch_app"


class KeyCode(IntEnum):
    HOME = 3
    BACK = 4
    DPAD_UP = 19
    DPAD_DOWN = 20
    DPAD_LEFT = 21
    DPAD_RIGHT = 22
    DPAD_CENTER = 23
    VOLUME_UP = 24
    VOLUME_DOWN = 25
    POWER = 26
    TAB = 61
    SPACE = 62
    ENTER = 66
    DEL = 67
    MENU = 82
    SEARCH = 84
    APP_SWITCH = 187

    @classmethod
    def lookup(cls, key: Union[str, int]) -> Optional[int]:
        """'back', 'KEYCODE_BACK', 4 and '4' all resolve to 4."""
        if isinstance(key, int):
            return key
        name = key.strip().upper()
        if name.isdigit():
            return int(name)
        if name.startswith("KEYCODE_"):
            name = name[len("KEYCODE_"):]
        member = cls.__members__.get(name)
        return int(member) if member is not None else None


_KEY_NAMES = {
    KeyCode.BACK: "back",
    KeyCode.HOME: "home",
    KeyCode.APP_SWITCH: "recent apps",
    KeyCode.ENTER: "enter",
    KeyCode.DEL: "delete",
}


@dataclass(frozen=True)
class Action:
    """
    One executable device operation.

    `type` is the tag; only the payload fields of that variant are set.
    Build instances through the classmethods, not the raw constructor.

    Payload per tag:
      TAP / DOUBLE_TAP             x, y
      LONG_PRESS                   x, y, duration_ms
      SWIPE                        x, y -> x2, y2, duration_ms
      SWIPE_DIRECTIONAL            direction, distance, duration_ms
      PRESS_KEY                    key
      WAIT                         duration_ms
      everything textual           text (typed text / thought / message /
                                   raw type / instruction / app name)
    """
    type: ActionType
    x: Optional[int] = None
    y: Optional[int] = None
    x2: Optional[int] = None
    y2: Optional[int] = None
    duration_ms: Optional[int] = None
    direction: Optional[Direction] = None
    distance: Optional[int] = None
    key: Optional[int] = None
    text: Optional[str] = None

    # -------------------------
    # Constructors
    # -------------------------
    @classmethod
    def tap(cls, x: int, y: int) -> "Action":
        return cls(ActionType.TAP, x=x, y=y)

    @classmethod
    def double_tap(cls, x: int, y: int) -> "Action":
        return cls(ActionType.DOUBLE_TAP, x=x, y=y)

    @classmethod
    def long_press(cls, x: int, y: int, duration_ms: int = 1000) -> "Action":
        return cls(ActionType.LONG_PRESS, x=x, y=y, duration_ms=duration_ms)

    @classmethod
    def swipe(cls, x1: int, y1: int, x2: int, y2: int, duration_ms: int = 300) -> "Action":
        return cls(ActionType.SWIPE, x=x1, y=y1, x2=x2, y2=y2, duration_ms=duration_ms)

    @classmethod
    def swipe_directional(cls, direction: Direction, distance: int = 500,
                          duration_ms: int = 300) -> "Action":
        return cls(ActionType.SWIPE_DIRECTIONAL, direction=direction,
                   distance=distance, duration_ms=duration_ms)

    @classmethod
    def input_text(cls, text: str) -> "Action":
        return cls(ActionType.INPUT_TEXT, text=text)

    @classmethod
    def press_key(cls, key: Union[KeyCode, int]) -> "Action":
        return cls(ActionType.PRESS_KEY, key=int(key))

    @classmethod
    def back(cls) -> "Action":
        return cls.press_key(KeyCode.BACK)

    @classmethod
    def home(cls) -> "Action":
        return cls.press_key(KeyCode.HOME)

    @classmethod
    def recent(cls) -> "Action":
        return cls.press_key(KeyCode.APP_SWITCH)

    @classmethod
    def enter(cls) -> "Action":
        return cls.press_key(KeyCode.ENTER)

    @classmethod
    def delete(cls) -> "Action":
        return cls.press_key(KeyCode.DEL)

    @classmethod
    def wait(cls, duration_ms: int = 1000) -> "Action":
        return cls(ActionType.WAIT, duration_ms=duration_ms)

    @classmethod
    def screenshot(cls) -> "Action":
        return cls(ActionType.SCREENSHOT)

    @classmethod
    def think(cls, thought: str) -> "Action":
        return cls(ActionType.THINK, text=thought)

    @classmethod
    def complete(cls, message: str = "task complete") -> "Action":
        return cls(ActionType.COMPLETE, text=message)

    @classmethod
    def error(cls, message: str) -> "Action":
        return cls(ActionType.ERROR, text=message)

    @classmethod
    def unknown(cls, raw_type: str) -> "Action":
        return cls(ActionType.UNKNOWN, text=raw_type)

    @classmethod
    def take_over(cls, message: str = "user assistance needed") -> "Action":
        return cls(ActionType.TAKE_OVER, text=message)

    @classmethod
    def interact(cls) -> "Action":
        return cls(ActionType.INTERACT)

    @classmethod
    def note(cls, message: str = "") -> "Action":
        return cls(ActionType.NOTE, text=message)

    @classmethod
    def call_api(cls, instruction: str = "") -> "Action":
        return cls(ActionType.CALL_API, text=instruction)

    @classmethod
    def launch_app(cls, app_name: str) -> "Action":
        return cls(ActionType.LAUNCH_APP, text=app_name)

    # -------------------------
    # Coordinates
    # -------------------------
    @property
    def has_coordinates(self) -> bool:
        return self.type in (ActionType.TAP, ActionType.DOUBLE_TAP,
                             ActionType.LONG_PRESS, ActionType.SWIPE)

    def with_points(self, x: int, y: int, x2: Optional[int] = None,
                    y2: Optional[int] = None) -> "Action":
        if self.type == ActionType.SWIPE:
            return replace(self, x=x, y=y, x2=x2, y2=y2)
        return replace(self, x=x, y=y)

    # -------------------------
    # Human-readable form (logs + history)
    # -------------------------
    def description(self) -> str:
        t = self.type
        if t == ActionType.TAP:
            return f"Tap ({self.x}, {self.y})"
        if t == ActionType.DOUBLE_TAP:
            return f"Double tap ({self.x}, {self.y})"
        if t == ActionType.LONG_PRESS:
            return f"Long press ({self.x}, {self.y}) {self.duration_ms}ms"
        if t == ActionType.SWIPE:
            return f"Swipe from ({self.x}, {self.y}) to ({self.x2}, {self.y2})"
        if t == ActionType.SWIPE_DIRECTIONAL:
            return f"Swipe {self.direction} {self.distance}px"
        if t == ActionType.INPUT_TEXT:
            return f"Type text: {self.text}"
        if t == ActionType.PRESS_KEY:
            name = _KEY_NAMES.get(self.key)
            return f"Press {name} key" if name else f"Press key {self.key}"
        if t == ActionType.WAIT:
            return f"Wait {self.duration_ms}ms"
        if t == ActionType.SCREENSHOT:
            return "Take screenshot"
        if t == ActionType.THINK:
            return f"AI thought: {self.text}"
        if t == ActionType.COMPLETE:
            return f"Task complete: {self.text}"
        if t == ActionType.ERROR:
            return f"Error: {self.text}"
        if t == ActionType.UNKNOWN:
            return f"Unknown action: {self.text}"
        if t == ActionType.TAKE_OVER:
            return f"User takeover required: {self.text}"
        if t == ActionType.INTERACT:
            return "User choice required"
        if t == ActionType.NOTE:
            return f"Note page: {self.text}"
        if t == ActionType.CALL_API:
            return f"Call API: {self.text}"
        if t == ActionType.LAUNCH_APP:
            return f"Launch app: {self.text}"
        raise ValueError(f"unhandled action type: {t}")

    def __str__(self) -> str:
        return self.description()


@dataclass(frozen=True)
class AnalyzeResult:
    action: Action
    thought: Optional[str] = None
