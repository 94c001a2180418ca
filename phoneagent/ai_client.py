# =========================
# FILE: phoneagent/ai_client.py
# =========================
"""
Vision model client.

One round trip = screenshot (base64 JPEG) + task + recent history in,
reply text out → parse() → coordinates scaled to the real screen.

Providers:
  zhipu / openai / custom   OpenAI-compatible POST {base_url}/chat/completions (httpx)
  ollama                    ollama.Client(host).chat(..., images=[...])
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx

from phoneagent.action_parser import parse, scale_result
from phoneagent.config import ProviderConfig
from phoneagent.schema import AnalyzeResult

try:
    import ollama
    OLLAMA_AVAILABLE = True
except ImportError:
    OLLAMA_AVAILABLE = False


MAX_TOKENS = 1024
PROMPT_HISTORY = 5

SYSTEM_PROMPT = """You are a phone-operating agent. Given the task, the action history and a screenshot of the current screen, choose the single next operation.
Always answer in exactly this format:
<think>{short reasoning for the choice}</think>
<answer>{one operation}</answer>

Operations (use nothing else):
- do(action="Tap", element=[x,y])
    Tap a point: buttons, list items, app icons, any clickable element.
- do(action="Tap", element=[x,y], message="sensitive")
    Same as Tap, for buttons involving payment, property or privacy.
- do(action="Type", text="xxx")
    Type into the focused input field (tap it first). Existing text is cleared automatically.
    The phone may use ADB Keyboard, which takes no screen space; look for 'ADB Keyboard {ON}'.
- do(action="Type_Name", text="xxx")
    Same as Type, for a person's name.
- do(action="Interact")
    Several options match and the user must choose.
- do(action="Swipe", start=[x1,y1], end=[x2,y2])
    Drag from start to end: scroll, switch pages, pull down the notification shade.
- do(action="Long Press", element=[x,y])
    Press and hold: context menus, text selection.
- do(action="Double Tap", element=[x,y])
    Two quick taps: zoom, select, open.
- do(action="Note", message="True")
    Record the current page for a later summary.
- do(action="Call_API", instruction="xxx")
    Summarise or comment on the current page or recorded notes.
- do(action="Take_over", message="xxx")
    The user must take over (login, verification).
- do(action="Back")
    Android back button: leave the screen, close a dialog.
- do(action="Home")
    Android home button: return to the launcher.
- do(action="Wait", duration="x seconds")
    Wait for the page to load.
- finish(message="xxx")
    The task is fully and correctly done; message is the final report.

Coordinates run from (0,0) at the top-left to (999,999) at the bottom-right, whatever the real screen size.
You receive a new screenshot after every operation.

Rules:
1. Do not use do(action="Launch", app="xxx"); go to the home screen and tap the icon.
2. On an unrelated page, go Back first. If Back does nothing, use the page's own back arrow or close button.
3. If a page has not loaded, Wait at most three times in a row, then go Back and re-enter.
4. If the page shows a network problem, tap reload.
5. If the target is not visible, Swipe to look for it. If swiping does nothing, move the start point and swipe further, then try the opposite direction.
6. If a tap had no effect, wait briefly, then adjust the position and retry; if it still fails, skip the step and mention it in the finish message.
7. Do not search the same list twice in a row; try each candidate section once to avoid loops.
8. Before finish, check that the task is complete and nothing was selected wrongly or missed.
"""


class AIClientError(RuntimeError):
    """Transport failure, bad status or unreadable provider reply."""


class AINotConfiguredError(AIClientError):
    pass


def build_user_message(instruction: str, width: int, height: int,
                       history: Sequence[str] = ()) -> str:
    message = f"Task: {instruction}\nScreen size: {width}x{height}"
    if history:
        recent = list(history)[-PROMPT_HISTORY:]
        message += "\n\nRecent actions: " + " -> ".join(recent)
    return message + "\n\nAnalyze the screenshot and return the next operation."


def build_chat_payload(model: str, image_b64: str, user_message: str) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_message},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                    },
                ],
            },
        ],
        "max_tokens": MAX_TOKENS,
    }


def extract_chat_reply(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise AIClientError(f"Unexpected response shape: {e!r}") from e
    if not isinstance(content, str):
        raise AIClientError("Reply content is not text")
    return content


class AIClient:
    def __init__(self, config: Optional[ProviderConfig] = None,
                 http: Optional[httpx.Client] = None, timeout: float = 120.0) -> None:
        self.config = config
        self._http = http if http else httpx.Client(timeout=timeout)
        self.timeout = timeout

    def configure(self, config: ProviderConfig) -> None:
        self.config = config
        print(f"🧠 AI provider: {config.provider} ({config.resolved_model})")

    @property
    def is_configured(self) -> bool:
        return self.config is not None and self.config.is_configured

    def close(self) -> None:
        self._http.close()

    # =========================================================
    # MAIN ENTRY
    # =========================================================
    def analyze(self, image_b64: str, instruction: str, width: int, height: int,
                history: Sequence[str] = ()) -> AnalyzeResult:
        """
        Ask the model for the next action.

        Raises AIClientError on transport/provider failure. A reply that
        arrives but makes no sense is not an error: parse() degrades it.
        """
        user_message = build_user_message(instruction, width, height, history)
        reply = self.request_reply(image_b64, user_message)
        return scale_result(parse(reply), width, height)

    def request_reply(self, image_b64: str, user_message: str) -> str:
        if not self.is_configured:
            raise AINotConfiguredError("AI provider is not configured")
        if self.config.provider == "ollama":
            return self._call_ollama(image_b64, user_message)
        return self._call_chat_completions(image_b64, user_message)

    # =========================================================
    # PROVIDERS
    # =========================================================
    def _call_chat_completions(self, image_b64: str, user_message: str) -> str:
        cfg = self.config
        headers = {"Content-Type": "application/json"}
        if cfg.api_key:
            headers["Authorization"] = f"Bearer {cfg.api_key}"
        payload = build_chat_payload(cfg.resolved_model, image_b64, user_message)
        try:
            r = self._http.post(f"{cfg.resolved_base_url}/chat/completions",
                                json=payload, headers=headers)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPStatusError as e:
            raise AIClientError(
                f"{cfg.provider} returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise AIClientError(f"{cfg.provider} request failed: {e}") from e
        except ValueError as e:
            raise AIClientError(f"{cfg.provider} sent invalid JSON: {e}") from e
        return extract_chat_reply(data)

    def _ollama(self):
        if not OLLAMA_AVAILABLE:
            raise AIClientError("ollama package not installed. Run: pip install ollama")
        return ollama.Client(host=self.config.resolved_base_url, timeout=self.timeout)

    def _call_ollama(self, image_b64: str, user_message: str) -> str:
        client = self._ollama()
        try:
            response = client.chat(
                model=self.config.resolved_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_message, "images": [image_b64]},
                ],
            )
            content = response["message"]["content"]
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            raise AIClientError(f"ollama request failed: {e}") from e
        except (KeyError, TypeError) as e:
            raise AIClientError(f"Unexpected ollama response: {e!r}") from e
        return content or ""

    # =========================================================
    # DIAGNOSTICS
    # =========================================================
    def test_connection(self) -> bool:
        if self.config is None or not self.config.provider:
            return False
        if self.config.provider == "ollama":
            if not OLLAMA_AVAILABLE:
                return False
            try:
                self._ollama().list()
                return True
            except (AIClientError, ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
                print(f"⚠️ Ollama not reachable: {e}")
                return False
        if self.config.provider in ("zhipu", "openai"):
            return bool(self.config.api_key)
        return True

    def available_models(self) -> List[str]:
        """Model names installed on the Ollama host (empty for other providers)."""
        if self.config is None or self.config.provider != "ollama" or not OLLAMA_AVAILABLE:
            return []
        try:
            models = self._ollama().list()
        except (AIClientError, ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            print(f"⚠️ Could not list models: {e}")
            return []
        names = []
        for m in models.get("models", []):
            name = m.get("model") or m.get("name") if hasattr(m, "get") else str(m)
            if name:
                names.append(name)
        return names
