from __future__ import annotations

import json

import pytest

from focus_deck import config_loader
from focus_deck.config_loader import ActionVerb, ConfigError, load_config, parse_config, parse_verb


def _write(tmp_path, payload) -> object:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


SAMPLE = {
    "language": "ja",
    "paths": {"steam": "C:/Steam/steam.exe", "epic": ""},
    "obs": {
        "path": "C:/obs/obs64.exe",
        "processName": "obs64|obs32",
        "websocket": {"host": "127.0.0.1", "port": 4455, "password": "secret"},
        "replayBuffer": True,
    },
    "managedApps": {
        "clibor": {
            "path": "C:/Clibor/Clibor.exe",
            "processName": "Clibor",
            "gameStartAction": "toggle-hotkeys",
            "gameEndAction": "toggle-hotkeys",
            "arguments": "/hs",
        },
        "wallpaper": {
            "path": "C:/WE/wallpaper32.exe",
            "processName": "wallpaper32|wallpaper64",
            "gameStartAction": "pause-wallpaper",
            "gameEndAction": "play-wallpaper",
        },
        "broken": {"path": "C:/x.exe", "gameStartAction": "explode", "gameEndAction": "none"},
    },
    "games": {
        "apex": {
            "name": "Apex Legends",
            "platform": "steam",
            "steamAppId": "1172470",
            "processName": "r5apex|r5apex_dx12",
            "appsToManage": ["obs", "clibor", "wallpaper", "broken"],
        },
        "local": {"name": "Local", "executablePath": "D:/Games/local.exe", "processName": "local"},
        "nameless": {"appsToManage": []},
    },
    "session": {"pollIntervalSeconds": 1, "startupTimeoutSeconds": "oops", "controlTimeoutSeconds": 3},
}


@pytest.mark.parametrize(
    "token, expected",
    [
        ("start-process", ActionVerb.START_PROCESS),
        ("  STOP-PROCESS ", ActionVerb.STOP_PROCESS),
        ("pause-wallpaper", ActionVerb.PAUSE_RENDER),
        ("play-wallpaper", ActionVerb.RESUME_RENDER),
        ("", ActionVerb.NONE),
        (None, ActionVerb.NONE),
        ("none", ActionVerb.NONE),
    ],
)
def test_parse_verb_accepts_closed_set_and_aliases(token, expected):
    assert parse_verb(token) is expected


def test_parse_verb_rejects_unknown_tokens():
    with pytest.raises(ValueError):
        parse_verb("set-discord-gaming-mode-now")


def test_load_config_builds_definitions(tmp_path):
    config = load_config(_write(tmp_path, SAMPLE))

    assert config.language == "ja"
    assert config.paths == {"steam": "C:/Steam/steam.exe"}

    obs = config.integrations["obs"]
    assert obs.start_verb is ActionVerb.OPEN_CONTROL_SESSION
    assert obs.stop_verb is ActionVerb.CLOSE_CONTROL_SESSION
    assert obs.websocket.host == "127.0.0.1"
    assert obs.websocket.password == "secret"
    assert obs.replay_buffer is True

    clibor = config.integrations["clibor"]
    assert clibor.arguments == "/hs"
    assert clibor.websocket is None

    wallpaper = config.integrations["wallpaper"]
    assert wallpaper.start_verb is ActionVerb.PAUSE_RENDER
    assert wallpaper.stop_verb is ActionVerb.RESUME_RENDER


def test_unknown_verb_marks_integration_invalid_without_failing(tmp_path):
    config = load_config(_write(tmp_path, SAMPLE))

    assert "broken" not in config.integrations
    assert "explode" in config.invalid_integrations["broken"]


def test_games_keep_order_and_launch_descriptor(tmp_path):
    config = load_config(_write(tmp_path, SAMPLE))

    apex = config.game("apex")
    assert apex.integration_ids == ("obs", "clibor", "wallpaper", "broken")
    assert apex.launch.platform == "steam"
    assert apex.launch.target == "1172470"

    local = config.game("local")
    assert local.launch.platform == "direct"
    assert local.launch.target == "D:/Games/local.exe"
    assert local.integration_ids == ()

    assert config.game("nameless") is None


def test_session_settings_fall_back_on_bad_values(tmp_path):
    config = load_config(_write(tmp_path, SAMPLE))

    assert config.session.poll_interval == 1.0
    assert config.session.startup_timeout == config_loader.SessionSettings().startup_timeout
    assert config.session.control_timeout == 3.0


def test_session_settings_reject_non_finite_numbers():
    raw = (
        '{"session": {"startupTimeoutSeconds": Infinity, "controlTimeoutSeconds": NaN,'
        ' "pollIntervalSeconds": NaN, "controlRetryDelaySeconds": -Infinity, "controlConnectAttempts": Infinity}}'
    )
    settings = parse_config(json.loads(raw)).session

    assert settings == config_loader.SessionSettings()


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), ("true", True), ("on", True), (1, True), ("false", False), ("0", False), (0, False), ("maybe", False)],
)
def test_replay_buffer_flag_is_parsed_as_boolean(value, expected):
    config = parse_config({"obs": {"replayBuffer": value}})
    assert config.integrations["obs"].replay_buffer is expected


def test_password_is_hidden_from_repr():
    settings = config_loader.WebSocketSettings(password="hunter2")
    assert "hunter2" not in repr(settings)


def test_managed_obs_entry_overrides_top_level_block():
    config = parse_config(
        {
            "obs": {"websocket": {"port": 4455}},
            "managedApps": {"obs": {"gameStartAction": "none", "gameEndAction": "stop-process", "processName": "obs64"}},
        }
    )
    obs = config.integrations["obs"]
    assert obs.start_verb is ActionVerb.NONE
    assert obs.stop_verb is ActionVerb.STOP_PROCESS


@pytest.mark.parametrize(
    "websocket",
    [{"port": "nope"}, {"port": 70000}, {"password": 1234}, "ws://localhost"],
)
def test_malformed_websocket_block_is_invalid(websocket):
    config = parse_config({"obs": {"websocket": websocket}})
    assert "obs" in config.invalid_integrations
    assert "obs" not in config.integrations


def test_load_config_missing_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.json")


def test_load_config_rejects_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_rejects_non_object(tmp_path):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, ["games"]))


def test_resolve_config_path_prefers_explicit_then_env(monkeypatch, tmp_path):
    monkeypatch.setenv(config_loader.CONFIG_ENV_VAR, str(tmp_path / "env.json"))
    assert config_loader.resolve_config_path(str(tmp_path / "cli.json")) == (tmp_path / "cli.json").resolve()
    assert config_loader.resolve_config_path(None) == (tmp_path / "env.json").resolve()
    monkeypatch.delenv(config_loader.CONFIG_ENV_VAR)
    monkeypatch.chdir(tmp_path)
    assert config_loader.resolve_config_path(None) == (tmp_path / "config" / "config.json").resolve()
