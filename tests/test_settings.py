from groupchat.server.settings import DEFAULTS, SettingsStore


def test_get_returns_default_when_empty(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    assert store.get("scheduler.cooldown") == 8.0


def test_set_and_get(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("scheduler.cooldown", 12.5)
    assert store.get("scheduler.cooldown") == 12.5


def test_delete_reverts_to_default(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("scheduler.cooldown", 12.5)
    store.delete("scheduler.cooldown")
    assert store.get("scheduler.cooldown") == 8.0


def test_get_all_returns_defaults_merged(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("agents.enabled", ["x-ai/grok-4.1-fast"])
    all_settings = store.get_all()
    assert all_settings["agents.enabled"] == ["x-ai/grok-4.1-fast"]
    assert all_settings["retry.max_attempts"] == 2
    assert set(all_settings) == set(DEFAULTS)


def test_set_many(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set_many({"stream.request_timeout": 30.0, "stream.char_delay": 0.0})
    assert store.get("stream.request_timeout") == 30.0
    assert store.get("stream.char_delay") == 0.0


def test_values_persist_across_instances(tmp_path):
    SettingsStore(tmp_path / "test.db").set("context.window_size", 40)
    assert SettingsStore(tmp_path / "test.db").get("context.window_size") == 40


def test_get_effective_with_cli_overrides(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("stream.request_timeout", 30.0)
    effective = store.get_effective(
        cli_overrides={"stream.request_timeout": 5.0, "completion.endpoint": None}
    )
    assert effective["stream.request_timeout"] == 5.0  # CLI wins
    assert effective["completion.endpoint"] == DEFAULTS["completion.endpoint"]


def test_unknown_key_returns_none(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    assert store.get("nonexistent.key") is None


def test_custom_default(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    assert store.get("nonexistent.key", default="fallback") == "fallback"
