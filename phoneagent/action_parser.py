# =========================
# FILE: phoneagent/action_parser.py
# =========================
"""
Model reply → Action.

Expected reply shape:
    <think>why</think><answer>do(action="Tap", element=[500,120])</answer>
    <answer>finish(message="done")</answer>

Models drift from that shape all the time, so parse() is total: a reply
it can't read becomes a THINK (nothing recognisable) or an ERROR (a call
with a missing parameter). It never raises.

Coordinates stay in the model's 0-999 space here. scale_result() does
the one conversion to device pixels.
"""

import re
from typing import Callable, Dict, Optional, Tuple

from phoneagent.schema import Action, AnalyzeResult

NORMALIZED_MAX = 999
TRUNCATE_AT = 200

THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)
ANSWER_RE = re.compile(r"<answer>(.*?)</answer>", re.DOTALL)
# do(...) / finish(...) where quoted strings may contain parentheses
CALL_RE = re.compile(r"""\b(?:do|finish)\s*\((?:[^()"']|"[^"]*"|'[^']*')*\)""")
# unbalanced quotes, e.g. finish(message=it's done)
LOOSE_CALL_RE = re.compile(r"\b(?:do|finish)\s*\([^)]+\)")
FINISH_RE = re.compile(r"finish\s*\(")
DO_RE = re.compile(r"do\s*\(")
DURATION_RE = re.compile(r"""\bduration\s*=\s*["']?\s*(\d+)""")


def _string_param(body: str, name: str) -> Optional[str]:
    m = re.search(r"\b" + name + r"""\s*=\s*(?:"([^"]*)"|'([^']*)')""", body)
    if not m:
        return None
    return m.group(1) if m.group(1) is not None else m.group(2)


def _point_param(body: str, name: str) -> Optional[Tuple[int, int]]:
    m = re.search(r"\b" + name + r"\s*=\s*\[\s*(\d+)\s*,\s*(\d+)\s*\]", body)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


# ===========================================================
# Per-action builders (body → Action)
# ===========================================================
def _point_action(label: str, build: Callable[[int, int], Action]) -> Callable[[str], Action]:
    def parse_point(body: str) -> Action:
        point = _point_param(body, "element")
        if point is None:
            return Action.error(f"{label} is missing element=[x,y]")
        return build(*point)
    return parse_point


def _swipe(body: str) -> Action:
    start = _point_param(body, "start")
    end = _point_param(body, "end")
    if start is None or end is None:
        return Action.error("swipe is missing start=[x,y] or end=[x,y]")
    return Action.swipe(start[0], start[1], end[0], end[1], 300)


def _type(body: str) -> Action:
    text = _string_param(body, "text")
    if text is None:
        return Action.error("type is missing text")
    return Action.input_text(text)


def _wait(body: str) -> Action:
    m = DURATION_RE.search(body)
    seconds = int(m.group(1)) if m else 1
    return Action.wait(seconds * 1000)


def _take_over(body: str) -> Action:
    message = _string_param(body, "message")
    return Action.take_over(message) if message is not None else Action.take_over()


def _launch(body: str) -> Action:
    app = _string_param(body, "app")
    if not app:
        return Action.error("launch is missing app")
    return Action.launch_app(app)


ACTION_TABLE: Dict[str, Callable[[str], Action]] = {
    "tap": _point_action("tap", Action.tap),
    "long_press": _point_action("long press", lambda x, y: Action.long_press(x, y, 1000)),
    "double_tap": _point_action("double tap", Action.double_tap),
    "swipe": _swipe,
    "type": _type,
    "type_name": _type,
    "back": lambda body: Action.back(),
    "home": lambda body: Action.home(),
    "wait": _wait,
    "take_over": _take_over,
    "interact": lambda body: Action.interact(),
    "note": lambda body: Action.note(_string_param(body, "message") or ""),
    "call_api": lambda body: Action.call_api(_string_param(body, "instruction") or ""),
    "launch": _launch,
}


def _table_key(name: str) -> str:
    # "Long Press", "long_press" and "long-press" are the same action
    return re.sub(r"[\s_\-]+", "_", name.strip().lower())


def parse_body(body: str, thought: Optional[str] = None) -> Action:
    """Turn the inside of <answer> (or a bare call) into an Action."""
    body = body.strip()
    if FINISH_RE.match(body):
        message = _string_param(body, "message")
        return Action.complete(message) if message is not None else Action.complete()

    if not DO_RE.match(body):
        return Action.think(thought or body[:TRUNCATE_AT])

    name = _string_param(body, "action")
    if name is None:
        return Action.error("could not parse action type")

    builder = ACTION_TABLE.get(_table_key(name))
    if builder is None:
        return Action.unknown(name.strip().lower())
    return builder(body)


def parse(reply: str) -> AnalyzeResult:
    reply = reply or ""

    thought: Optional[str] = None
    m = THINK_RE.search(reply)
    if m:
        thought = m.group(1).strip() or None

    m = ANSWER_RE.search(reply)
    body = m.group(1).strip() if m else ""

    if not body:
        # No usable <answer>: look for a bare call anywhere in the text
        call = CALL_RE.search(reply) or LOOSE_CALL_RE.search(reply)
        if call is None:
            text = thought or reply.strip()[:TRUNCATE_AT]
            return AnalyzeResult(action=Action.think(text), thought=text or None)
        body = call.group(0)
        if thought is None:
            thought = reply[:call.start()].strip() or None

    return AnalyzeResult(action=parse_body(body, thought), thought=thought)


# ===========================================================
# Normalized (0-999) → device pixels
# ===========================================================
def normalized_to_actual(nx: int, ny: int, width: int, height: int) -> Tuple[int, int]:
    x = min(max(nx * width // NORMALIZED_MAX, 0), width)
    y = min(max(ny * height // NORMALIZED_MAX, 0), height)
    return x, y


def scale_action(action: Action, width: int, height: int) -> Action:
    if not action.has_coordinates:
        return action
    x, y = normalized_to_actual(action.x, action.y, width, height)
    if action.x2 is None:
        return action.with_points(x, y)
    x2, y2 = normalized_to_actual(action.x2, action.y2, width, height)
    return action.with_points(x, y, x2, y2)


def scale_result(result: AnalyzeResult, width: int, height: int) -> AnalyzeResult:
    return AnalyzeResult(action=scale_action(result.action, width, height),
                         thought=result.thought)
