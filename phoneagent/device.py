# =========================
# FILE: phoneagent/device.py
# =========================
"""
Device primitives on top of the root shell.

Every action returns a bool (True = the shell reported success) so the
step loop can record "<action>: success|failed" without try/except.
"""

import base64
import io
import re
import time
from typing import Callable, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from phoneagent.adb import RootShell
from phoneagent.apps import AppResolver
from phoneagent.schema import KeyCode

ADB_KEYBOARD_PKG = "com.android.adbkeyboard"
ADB_KEYBOARD_IME = "com.android.adbkeyboard/.AdbIME"
KEYCODE_PASTE = 279

# `input text` needs these escaped; space must become %s
INPUT_ESCAPES = {
    " ": "%s",
    '"': '\\"',
    "'": "\\'",
    "&": "\\&",
    "<": "\\<",
    ">": "\\>",
    "|": "\\|",
    ";": "\\;",
    "(": "\\(",
    ")": "\\)",
}


def escape_input_text(text: str) -> str:
    return "".join(INPUT_ESCAPES.get(ch, ch) for ch in text)


def _quote_for_shell(text: str) -> str:
    """Contents for a double-quoted shell argument."""
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("`", "\\`")
    )


class DeviceController:
    def __init__(self, shell: RootShell, apps: Optional[AppResolver] = None) -> None:
        self.shell = shell
        self.apps = apps if apps else AppResolver(shell)
        self._cached_screen_size: Optional[Tuple[int, int]] = None

    # -------------------------
    # Screen info
    # -------------------------
    def screen_size(self) -> Tuple[int, int]:
        if self._cached_screen_size:
            return self._cached_screen_size
        out = self.shell.execute("wm size").output
        physical = re.search(r"Physical size:\s*(\d+)x(\d+)", out)
        override = re.search(r"Override size:\s*(\d+)x(\d+)", out)
        m = override or physical
        if not m:
            raise RuntimeError(f"Could not parse screen size from: {out!r}")
        self._cached_screen_size = (int(m.group(1)), int(m.group(2)))
        return self._cached_screen_size

    def invalidate_screen_size_cache(self) -> None:
        self._cached_screen_size = None

    def current_package(self) -> str:
        out = self.shell.execute("dumpsys activity activities | grep mResumedActivity").output
        m = re.search(r"u0\s+(\S+)/", out)
        if m:
            return m.group(1)
        m = re.search(r"(\S+)/\S+\s+\w+\}", out)
        return m.group(1) if m else ""

    def is_screen_on(self) -> bool:
        out = self.shell.execute("dumpsys power | grep 'Display Power'").output
        return "state=ON" in out

    def wake_up(self) -> bool:
        return self.shell.execute_silent("input keyevent KEYCODE_WAKEUP")

    # -------------------------
    # Screenshot
    # -------------------------
    def capture_png(self) -> Optional[bytes]:
        return self.shell.execute_binary("screencap -p")

    def take_screenshot(self) -> bool:
        return self.capture_png() is not None

    def screenshot_base64(self, max_width: int = 1080, quality: int = 80) -> Optional[str]:
        """PNG from screencap → downscaled JPEG → base64 (no newlines)."""
        png = self.capture_png()
        if png is None:
            return None
        try:
            img = Image.open(io.BytesIO(png))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            print(f"⚠️ Screenshot decode failed: {e}")
            return None
        if img.width > max_width:
            ratio = max_width / img.width
            img = img.resize((max_width, max(1, int(img.height * ratio))), Image.LANCZOS)
        buf = io.BytesIO()
        img.convert("RGB").save(buf, format="JPEG", quality=quality)
        return base64.b64encode(buf.getvalue()).decode("ascii")

    # -------------------------
    # Gestures
    # -------------------------
    def tap(self, x: int, y: int) -> bool:
        return self.shell.execute_silent(f"input tap {x} {y}")

    def double_tap(self, x: int, y: int) -> bool:
        first = self.tap(x, y)
        time.sleep(0.1)
        second = self.tap(x, y)
        return first and second

    def long_press(self, x: int, y: int, duration_ms: int = 1000) -> bool:
        return self.shell.execute_silent(f"input swipe {x} {y} {x} {y} {duration_ms}")

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int = 300) -> bool:
        return self.shell.execute_silent(f"input swipe {x1} {y1} {x2} {y2} {duration_ms}")

    def swipe_direction(self, direction: str, distance: int = 500, duration_ms: int = 300) -> bool:
        """Swipe from screen centre; 'up' moves the finger up (content scrolls down)."""
        w, h = self.screen_size()
        cx, cy = w // 2, h // 2
        half = distance // 2
        vectors = {
            "up": (cx, cy + half, cx, cy - half),
            "down": (cx, cy - half, cx, cy + half),
            "left": (cx + half, cy, cx - half, cy),
            "right": (cx - half, cy, cx + half, cy),
        }
        if direction not in vectors:
            return False
        x1, y1, x2, y2 = vectors[direction]
        return self.swipe(x1, y1, x2, y2, duration_ms)

    # -------------------------
    # Keys
    # -------------------------
    def press_key(self, keycode: int) -> bool:
        return self.shell.execute_silent(f"input keyevent {int(keycode)}")

    def back(self) -> bool:
        return self.press_key(KeyCode.BACK)

    def home(self) -> bool:
        return self.press_key(KeyCode.HOME)

    def recent(self) -> bool:
        return self.press_key(KeyCode.APP_SWITCH)

    # -------------------------
    # Text input cascade
    # -------------------------
    def input_text(self, text: str) -> bool:
        """
        First strategy that reports success wins:
          1. `input text` (ASCII only)
          2. ADB Keyboard broadcast (base64 payload)
          3. `cmd clipboard set` + paste
          4. Clipper broadcast + paste
          5. character by character (never fails)
        """
        strategies: List[Callable[[str], bool]] = []
        if text.isascii():
            strategies.append(self._input_direct)
        strategies += [
            self._input_via_adb_keyboard,
            self._input_via_clipboard,
            self._input_via_clipper,
        ]
        for attempt in strategies:
            if attempt(text):
                return True
        return self._input_per_char(text)

    def _input_direct(self, text: str) -> bool:
        return self.shell.execute_silent(f'input text "{escape_input_text(text)}"')

    def _adb_keyboard_ready(self) -> bool:
        installed = self.shell.execute(f"pm list packages | grep {ADB_KEYBOARD_PKG}")
        if ADB_KEYBOARD_PKG not in installed.output:
            return False
        current = self.shell.execute("settings get secure default_input_method").output
        if ADB_KEYBOARD_PKG not in current:
            if not self.shell.execute_silent(f"ime set {ADB_KEYBOARD_IME}"):
                return False
            time.sleep(0.5)
        return True

    def _input_via_adb_keyboard(self, text: str) -> bool:
        if not self._adb_keyboard_ready():
            return False
        payload = base64.b64encode(text.encode("utf-8")).decode("ascii")
        result = self.shell.execute(f"am broadcast -a ADB_INPUT_B64 --es msg '{payload}'")
        if "result=0" in result.output or "Broadcast completed" in result.output:
            time.sleep(0.3)
            return True
        result = self.shell.execute(f'am broadcast -a ADB_INPUT_TEXT --es msg "{_quote_for_shell(text)}"')
        if "Broadcast completed" in result.output:
            time.sleep(0.3)
            return True
        return False

    def _paste(self) -> bool:
        time.sleep(0.2)
        return self.press_key(KEYCODE_PASTE)

    def _input_via_clipboard(self, text: str) -> bool:
        result = self.shell.execute(f'cmd clipboard set "{_quote_for_shell(text)}" 2>&1')
        if not result.success or "error" in result.output.lower() or "exception" in result.output.lower():
            return False
        return self._paste()

    def _input_via_clipper(self, text: str) -> bool:
        result = self.shell.execute(f'am broadcast -a clipper.set -e text "{_quote_for_shell(text)}"')
        if not result.success or "Broadcast completed" not in result.output:
            return False
        return self._paste()

    def _input_per_char(self, text: str) -> bool:
        for ch in text:
            if ch.isascii():
                self.shell.execute_silent(f'input text "{escape_input_text(ch)}"')
            else:
                self.shell.execute_silent(f'input text "\\u{ord(ch):04x}"')
            time.sleep(0.05)
        return True

    # -------------------------
    # Apps
    # -------------------------
    def launch_package(self, package: str) -> bool:
        attempts = [
            f"monkey -p {package} -c android.intent.category.LAUNCHER 1",
            f"am start -n $(cmd package resolve-activity --brief {package} | tail -n 1)",
            f"am start -a android.intent.action.MAIN -c android.intent.category.LAUNCHER {package}",
        ]
        for command in attempts:
            result = self.shell.execute(command)
            if result.success and "Error" not in result.output and "No activities" not in result.output:
                time.sleep(0.5)
                return True
        print(f"⚠️ Could not launch {package}")
        return False

    def launch_app(self, app_name: str) -> bool:
        package = self.apps.find_package(app_name)
        if not package:
            print(f"❌ No installed app matches '{app_name}'")
            return False
        print(f"📱 Launching {app_name} → {package}")
        return self.launch_package(package)

    # -------------------------
    # Feedback
    # -------------------------
    def vibrate(self, duration_ms: int = 200) -> bool:
        return self.shell.execute_silent(f"cmd vibrator vibrate {duration_ms}")
