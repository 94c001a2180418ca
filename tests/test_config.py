import json

import pytest

from phoneagent.config import (
    DEFAULT_WAKE_WORDS,
    AgentSettings,
    ConfigManager,
    LoopSettings,
    ProviderConfig,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PROVIDER", "API_KEY", "BASE_URL", "MODEL", "ADB_SERIAL"):
        monkeypatch.delenv("PHONEAGENT_" + name, raising=False)


@pytest.fixture
def manager(tmp_path):
    return ConfigManager(str(tmp_path / "phoneagent_config.json"))


def test_defaults_without_a_file(manager):
    settings = manager.load()
    assert not manager.has_config()
    assert settings.provider.provider is None
    assert not settings.provider.is_configured
    assert settings.loop.max_steps == 50
    assert settings.voice.wake_words == DEFAULT_WAKE_WORDS
    assert settings.use_root


def test_save_and_load(manager):
    settings = AgentSettings()
    settings.provider = ProviderConfig(provider="zhipu", api_key="abc")
    settings.loop = LoopSettings(max_steps=20)
    settings.voice.wake_words = ["computer"]
    settings.adb_serial = "emulator-5554"
    manager.save(settings)

    loaded = manager.load()
    assert loaded.provider == settings.provider
    assert loaded.loop.max_steps == 20
    assert loaded.voice.wake_words == ["computer"]
    assert loaded.adb_serial == "emulator-5554"

    with open(manager.config_path, encoding="utf-8") as f:
        assert "last_updated" in json.load(f)

    manager.clear()
    assert not manager.has_config()


def test_unknown_keys_are_ignored(manager):
    with open(manager.config_path, "w", encoding="utf-8") as f:
        json.dump({"provider": {"provider": "ollama", "legacy_field": 1}, "loop": "oops"}, f)
    settings = manager.load()
    assert settings.provider.provider == "ollama"
    assert settings.loop == LoopSettings()


def test_corrupt_file_falls_back_to_defaults(manager, capsys):
    with open(manager.config_path, "w", encoding="utf-8") as f:
        f.write("{not json")
    settings = manager.load()
    assert settings == AgentSettings()
    assert "Could not load config" in capsys.readouterr().out


def test_empty_wake_words_restore_defaults(manager):
    with open(manager.config_path, "w", encoding="utf-8") as f:
        json.dump({"voice": {"wake_words": []}}, f)
    assert manager.load().voice.wake_words == DEFAULT_WAKE_WORDS


def test_environment_wins(manager, monkeypatch):
    manager.save(AgentSettings(provider=ProviderConfig(provider="zhipu", api_key="from-file")))
    monkeypatch.setenv("PHONEAGENT_PROVIDER", " OpenAI ")
    monkeypatch.setenv("PHONEAGENT_API_KEY", "from-env")
    monkeypatch.setenv("PHONEAGENT_ADB_SERIAL", "R58M123")

    settings = manager.load()
    assert settings.provider.provider == "openai"
    assert settings.provider.api_key == "from-env"
    assert settings.adb_serial == "R58M123"


@pytest.mark.parametrize("config,ok", [
    (ProviderConfig(), False),
    (ProviderConfig(provider="bogus"), False),
    (ProviderConfig(provider="zhipu"), False),
    (ProviderConfig(provider="zhipu", api_key="k"), True),
    (ProviderConfig(provider="openai", api_key="k"), True),
    (ProviderConfig(provider="ollama"), True),
    (ProviderConfig(provider="custom"), False),
    (ProviderConfig(provider="custom", base_url="http://x"), True),
])
def test_is_configured(config, ok):
    assert config.is_configured is ok


def test_resolved_defaults():
    cfg = ProviderConfig(provider="zhipu", api_key="k")
    assert cfg.resolved_model == "glm-4v-flash"
    assert cfg.resolved_base_url == "https://open.bigmodel.cn/api/paas/v4"
    cfg = ProviderConfig(provider="ollama", base_url="http://gpu:11434/", model="qwen2.5vl")
    assert cfg.resolved_model == "qwen2.5vl"
    assert cfg.resolved_base_url == "http://gpu:11434"
