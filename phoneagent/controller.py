# =========================
# FILE: phoneagent/controller.py
# =========================
"""
Interactive CLI.

Free text starts a task. Everything else is a console command:
  stop | status | history | voice on | voice off | listen | config | apps <query> | exit
"""

import traceback
from typing import Callable

from phoneagent.adb import AdbClient, AdbError, RootShell
from phoneagent.agent_controller import AgentController
from phoneagent.ai_client import AIClient
from phoneagent.apps import AppResolver
from phoneagent.config import PROVIDER_DEFAULTS, PROVIDERS, AgentSettings, ConfigManager
from phoneagent.device import DeviceController
from phoneagent.events import AgentEvent, EventBus, VoiceEvent
from phoneagent.recognizer import VoskRecognizer
from phoneagent.voice import Feedback, VoiceArbiter, WakeLock

AGENT_ICONS = {
    "log": "ℹ️ ",
    "warning": "⚠️ ",
    "error": "❌",
    "task_started": "🚀",
    "task_completed": "✅",
    "step_started": "🔄",
    "action_parsed": "👉",
    "thought": "🤔",
}

VOICE_ICONS = {
    "service_started": "🎤",
    "service_stopped": "🔇",
    "wake_word_detected": "👂",
    "command_recognized": "🗣️ ",
    "command_timeout": "⌛",
    "error": "⚠️ ",
}

HELP = """
==================================================
<anything else>   run it as a task on the phone
stop              stop the running task
status            agent / voice / foreground app
history           actions of the current or last task
voice on|off      wake-word listening
listen            listen for one command now (no wake word)
config            set AI provider / key / model
apps <query>      show matching installed apps
exit
==================================================
"""


def print_event(event: object) -> None:
    """Console subscriber: one emoji line per event."""
    if isinstance(event, AgentEvent):
        if event.kind == "screenshot":
            print(f"📸 Step {event.step}: screenshot ({len(event.image_b64 or '') // 1024} KB)")
            return
        if event.kind == "task_finished":
            print(f"🏁 Task finished ({event.message}) after {event.step} step(s)")
            return
        icon = AGENT_ICONS.get(event.kind, "•")
        print(f"{icon} {event.message}")
    elif isinstance(event, VoiceEvent):
        icon = VOICE_ICONS.get(event.kind, "•")
        text = event.message or event.kind.replace("_", " ")
        print(f"{icon} {text}")


def voice_bridge(voice: VoiceArbiter) -> Callable[[object], None]:
    """Tell the arbiter when tasks start and end, whoever started them."""

    def on_event(event: object) -> None:
        if not isinstance(event, AgentEvent):
            return
        if event.kind == "task_started":
            voice.on_task_started()
        elif event.kind == "task_finished":
            voice.on_task_completed()

    return on_event


def configure_provider(config: ConfigManager, settings: AgentSettings, ai: AIClient) -> None:
    p = settings.provider
    print(f"Providers: {', '.join(PROVIDERS)}")
    provider = input(f"Provider [{p.provider or 'zhipu'}]: ").strip().lower() or p.provider or "zhipu"
    if provider not in PROVIDERS:
        print(f"❌ Unknown provider: {provider}")
        return
    defaults = PROVIDER_DEFAULTS[provider]
    p.provider = provider
    if provider != "ollama":
        key = input("API key (enter = keep): ").strip()
        if key:
            p.api_key = key
    base_url = input(f"Base URL [{p.base_url or defaults['base_url']}]: ").strip()
    if base_url:
        p.base_url = base_url
    model = input(f"Model [{p.model or defaults['model']}]: ").strip()
    if model:
        p.model = model

    if not p.is_configured:
        print("⚠️ Provider incomplete (API key / base URL missing). Not saved.")
        return
    config.save(settings)
    ai.configure(p)
    if ai.test_connection():
        print("✅ Provider saved")
    else:
        print("⚠️ Saved, but the connection test failed")


def print_status(agent: AgentController, voice: VoiceArbiter, device: DeviceController) -> None:
    print(f"🤖 Agent: {agent.state.value}")
    if agent.current_task:
        print(f"   Task: {agent.current_task} (step {agent.current_step})")
    print(f"🎤 Voice: {voice.state.value}  wake words: {', '.join(voice.wake_words)}")
    if voice.last_command:
        print(f"   Last command: {voice.last_command}")
    pkg = device.current_package()
    if pkg:
        print(f"📱 Foreground: {pkg}")


def print_history(agent: AgentController) -> None:
    log = agent.action_log()
    if not log:
        print("📚 No actions yet.")
        return
    for i, entry in enumerate(log, 1):
        print(f"  {i:>3}. {entry}")


def print_apps(apps: AppResolver, query: str) -> None:
    if not query:
        print("Usage: apps <query>")
        return
    best = apps.find_package(query)
    print(f"🔎 Best match: {best or 'none'}")
    for score, label, pkg in apps.candidates(query):
        print(f"   {label} ({pkg}) score={score:.2f}")


def run_cli(config_path: str = "phoneagent_config.json") -> None:
    config = ConfigManager(config_path)
    settings = config.load()

    try:
        adb = AdbClient(serial=settings.adb_serial)
        devs = adb.ensure_device()
    except AdbError as e:
        print(f"❌ {e}")
        return
    print("✅ Connected:", len(devs), "device(s)")

    shell = RootShell(adb, use_root=settings.use_root)
    apps = AppResolver(shell)
    device = DeviceController(shell, apps)
    if not device.is_screen_on():
        device.wake_up()

    try:
        w, h = device.screen_size()
        print(f"📱 {w}x{h}")
    except RuntimeError as e:
        print(f"⚠️ {e}")

    events = EventBus()
    events.subscribe(print_event)

    ai = AIClient()
    if settings.provider.is_configured:
        ai.configure(settings.provider)
    else:
        print("⚠️ AI not configured. Type 'config' to set a provider.")

    agent = AgentController(device, ai, events, settings.loop, shell, settings.use_root)
    if not agent.initialize():
        events.drain(timeout=2)
        events.close()
        return

    voice = VoiceArbiter(
        recognizer_factory=lambda: VoskRecognizer(settings.voice.model_path, settings.voice.sample_rate),
        on_command=agent.start_task,
        events=events,
        settings=settings.voice,
        wake_lock=WakeLock(shell),
        feedback=Feedback(device),
    )
    events.subscribe(voice_bridge(voice))

    print(HELP)

    while True:
        try:
            utter = input("> ").strip()
            if not utter:
                continue
            cmd = utter.lower()

            if cmd in ("exit", "quit"):
                break
            if cmd == "stop":
                agent.stop_task()
            elif cmd == "status":
                print_status(agent, voice, device)
            elif cmd == "history":
                print_history(agent)
            elif cmd == "voice on":
                if not voice.start():
                    print("⚠️ Voice already on (or unavailable)")
            elif cmd == "voice off":
                voice.stop()
            elif cmd == "listen":
                if not voice.trigger():
                    print("⚠️ Voice is off or already listening")
            elif cmd == "config":
                configure_provider(config, settings, ai)
            elif cmd.startswith("apps"):
                print_apps(apps, utter[4:].strip())
            else:
                agent.start_task(utter)

        except (KeyboardInterrupt, EOFError):
            print()
            break
        except Exception as e:
            print(f"❌ Error: {e}")
            traceback.print_exc()

    print("Stopping.")
    agent.stop_task()
    voice.stop()
    agent.wait(timeout=5)
    events.drain(timeout=2)
    events.close()
    ai.close()
