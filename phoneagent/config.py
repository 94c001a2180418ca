# =========================
# FILE: phoneagent/config.py
# =========================
"""
Settings + persistence.

Everything lives in one JSON file (default: phoneagent_config.json).
A missing or unreadable file means defaults; loading never raises.
PHONEAGENT_* environment variables win over the file.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Dict, List, Optional

PROVIDERS = ("zhipu", "ollama", "openai", "custom")

PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "zhipu": {"model": "glm-4v-flash", "base_url": "https://open.bigmodel.cn/api/paas/v4"},
    "ollama": {"model": "llava", "base_url": "http://localhost:11434"},
    "openai": {"model": "gpt-4o", "base_url": "https://api.openai.com/v1"},
    "custom": {"model": "gpt-4-vision-preview", "base_url": ""},
}

DEFAULT_WAKE_WORDS = ["jarvis", "run command"]


@dataclass
class ProviderConfig:
    provider: Optional[str] = None
    api_key: str = ""
    base_url: str = ""
    model: str = ""

    @property
    def resolved_model(self) -> str:
        if self.model:
            return self.model
        return PROVIDER_DEFAULTS.get(self.provider or "", {}).get("model", "")

    @property
    def resolved_base_url(self) -> str:
        url = self.base_url or PROVIDER_DEFAULTS.get(self.provider or "", {}).get("base_url", "")
        return url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        if self.provider not in PROVIDERS:
            return False
        if self.provider in ("zhipu", "openai"):
            return bool(self.api_key)
        if self.provider == "custom":
            return bool(self.base_url)
        return True


@dataclass
class VoiceSettings:
    wake_words: List[str] = field(default_factory=lambda: list(DEFAULT_WAKE_WORDS))
    model_path: str = "vosk-model-small-en-us-0.15"
    sample_rate: int = 16000
    command_timeout: float = 10.0
    activation_cooldown: float = 2.0
    buffer_reset_interval: float = 3.0
    settle_delay: float = 0.5
    resume_delay: float = 1.5


@dataclass
class LoopSettings:
    max_steps: int = 50
    action_delay: float = 0.5
    screenshot_retry_delay: float = 1.0
    ai_retry_delay: float = 2.0
    ai_history_window: int = 10
    log_history_window: int = 200


@dataclass
class AgentSettings:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    voice: VoiceSettings = field(default_factory=VoiceSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)
    use_root: bool = True
    adb_serial: Optional[str] = None


def _section(cls, data):
    """Build a dataclass from a dict, ignoring keys it doesn't know."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


class ConfigManager:
    ENV_PREFIX = "PHONEAGENT_"

    def __init__(self, config_path: str = "phoneagent_config.json") -> None:
        self.config_path = config_path

    # -------------------------
    # Persistence
    # -------------------------
    def has_config(self) -> bool:
        return os.path.exists(self.config_path)

    def load(self) -> AgentSettings:
        """Load settings from disk, then apply environment overrides."""
        settings = AgentSettings()
        if self.has_config():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                settings = AgentSettings(
                    provider=_section(ProviderConfig, data.get("provider")),
                    voice=_section(VoiceSettings, data.get("voice")),
                    loop=_section(LoopSettings, data.get("loop")),
                    use_root=bool(data.get("use_root", True)),
                    adb_serial=data.get("adb_serial"),
                )
            except (OSError, ValueError, TypeError, AttributeError) as e:
                print(f"⚠️ Could not load config: {e}")
                settings = AgentSettings()
        self._apply_env(settings)
        if not settings.voice.wake_words:
            settings.voice.wake_words = list(DEFAULT_WAKE_WORDS)
        return settings

    def save(self, settings: AgentSettings) -> None:
        data = asdict(settings)
        data["last_updated"] = datetime.now().isoformat()
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            print(f"⚠️ Could not save config: {e}")

    def clear(self) -> None:
        if self.has_config():
            os.remove(self.config_path)

    # -------------------------
    # Environment
    # -------------------------
    def _apply_env(self, settings: AgentSettings) -> None:
        env = os.environ
        p = settings.provider
        provider = env.get(self.ENV_PREFIX + "PROVIDER")
        if provider:
            p.provider = provider.strip().lower()
        p.api_key = env.get(self.ENV_PREFIX + "API_KEY", p.api_key)
        p.base_url = env.get(self.ENV_PREFIX + "BASE_URL", p.base_url)
        p.model = env.get(self.ENV_PREFIX + "MODEL", p.model)
        settings.adb_serial = env.get(self.ENV_PREFIX + "ADB_SERIAL", settings.adb_serial)
