from pathlib import Path

import pytest

from tuicord.config import ConfigError, read_config
from tuicord.gateway.state import GatewayIntents, PresenceStatus
from tuicord.settings import (
    TuicordSettings,
    load_settings,
    require_token,
    validate_settings_data,
)

from tests.gateway_fakes import TOKEN


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "tuicord.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_settings_strip_token_and_accept_intent_names(tmp_path: Path) -> None:
    settings = validate_settings_data(
        {
            "gateway": {
                "token": f"  {TOKEN}  ",
                "intents": ["guilds", "GUILD_MESSAGES"],
                "status": "idle",
            }
        },
        config_path=tmp_path / "tuicord.toml",
    )

    assert settings.gateway.token is not None
    assert settings.gateway.token.get_secret_value() == TOKEN
    assert settings.gateway.intents == int(
        GatewayIntents.GUILDS | GatewayIntents.GUILD_MESSAGES
    )
    assert settings.gateway.status is PresenceStatus.IDLE
    assert TOKEN not in repr(settings)


def test_settings_defaults() -> None:
    settings = TuicordSettings.model_validate({})

    assert settings.gateway.token is None
    assert settings.gateway.url == "wss://gateway.discord.gg"
    assert settings.gateway.intents == int(GatewayIntents.default())
    assert settings.gateway.max_resume_failures == 3


@pytest.mark.parametrize(
    ("gateway", "match"),
    [
        ({"intents": ["not_a_flag"]}, "intents"),
        ({"intents": True}, "intents"),
        ({"url": "https://gateway.discord.gg"}, "url"),
        ({"backoff_base": 10.0, "backoff_cap": 5.0}, "backoff_cap"),
        ({"status": "busy"}, "status"),
        ({"token": "   "}, "token"),
        ({"surprise": 1}, "surprise"),
    ],
)
def test_settings_rejects_invalid_values(
    tmp_path: Path, gateway: dict, match: str
) -> None:
    with pytest.raises(ConfigError, match=match):
        validate_settings_data(
            {"gateway": gateway}, config_path=tmp_path / "tuicord.toml"
        )


def test_top_level_token_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="gateway"):
        validate_settings_data({"token": TOKEN}, config_path=tmp_path / "x.toml")


def test_load_settings_from_toml(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        f'[gateway]\ntoken = "{TOKEN}"\nintents = 513\nhello_timeout = 5.0\n',
    )

    settings, config_path = load_settings(path)

    assert config_path == path
    assert require_token(settings, config_path) == TOKEN
    config = settings.gateway.to_gateway_config()
    assert config.intents == 513
    assert config.hello_timeout == 5.0
    assert config.token.get_secret_value() == TOKEN


def test_environment_overrides_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = _write(tmp_path, '[gateway]\ntoken = "from-file"\nstatus = "idle"\n')
    monkeypatch.setenv("TUICORD__GATEWAY__STATUS", "dnd")

    settings, _ = load_settings(path)

    assert settings.gateway.status is PresenceStatus.DND
    assert settings.gateway.token is not None
    assert settings.gateway.token.get_secret_value() == "from-file"


def test_missing_token_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path, "[gateway]\nintents = 1\n")
    settings, config_path = load_settings(path)

    with pytest.raises(ConfigError, match="Missing gateway token"):
        require_token(settings, config_path)
    with pytest.raises(ConfigError):
        settings.gateway.to_gateway_config()


def test_missing_and_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Missing config file"):
        load_settings(tmp_path / "absent.toml")

    broken = _write(tmp_path, "[gateway\n")
    with pytest.raises(ConfigError, match="Malformed TOML"):
        load_settings(broken)

    with pytest.raises(ConfigError, match="not a file"):
        read_config(tmp_path)
