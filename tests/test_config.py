from pathlib import Path

import pytest

from linkdrop.config import (
    DEFAULT_ADDRESS,
    DEFAULT_PORT,
    DEFAULT_SHUTDOWN_GRACE,
    load_config,
    parse_env_config,
    read_logging_config,
)

from conftest import FEED_TOKEN, PRIVATE_TOKEN

BASE_ENV = {
    "LINKDROP_PRIVATE_TOKEN": PRIVATE_TOKEN,
    "LINKDROP_FEED_TOKEN": FEED_TOKEN,
}


def test_load_config_defaults():
    config = load_config("feed.xml", dict(BASE_ENV))

    assert config.feed_path == Path("feed.xml")
    assert config.private_token == PRIVATE_TOKEN
    assert config.feed_token == FEED_TOKEN
    assert config.address == DEFAULT_ADDRESS
    assert config.port == DEFAULT_PORT
    assert config.shutdown_grace == DEFAULT_SHUTDOWN_GRACE


def test_load_config_overrides():
    env = dict(
        BASE_ENV,
        LINKDROP_ADDRESS="0.0.0.0",
        LINKDROP_PORT="9000",
        LINKDROP_SHUTDOWN_GRACE="2.5",
    )

    config = load_config("feed.xml", env)

    assert config.address == "0.0.0.0"
    assert config.port == 9000
    assert config.shutdown_grace == 2.5


@pytest.mark.parametrize("raw", ["not-a-port", "0", "70000"])
def test_invalid_port_falls_back_to_default(raw, caplog):
    config = load_config("feed.xml", dict(BASE_ENV, LINKDROP_PORT=raw))

    assert config.port == DEFAULT_PORT
    assert "LINKDROP_PORT" in caplog.text


@pytest.mark.parametrize("missing", ["LINKDROP_PRIVATE_TOKEN", "LINKDROP_FEED_TOKEN"])
def test_missing_token_is_an_error(missing):
    env = dict(BASE_ENV)
    del env[missing]

    with pytest.raises(ValueError, match=f"{missing} environment variable is not set"):
        load_config("feed.xml", env)


def test_short_token_is_an_error():
    env = dict(BASE_ENV, LINKDROP_PRIVATE_TOKEN="short")

    with pytest.raises(ValueError, match="too short"):
        load_config("feed.xml", env)


@pytest.mark.parametrize("raw", ["soon", "-1"])
def test_invalid_grace_is_an_error(raw):
    with pytest.raises(ValueError, match="LINKDROP_SHUTDOWN_GRACE"):
        load_config("feed.xml", dict(BASE_ENV, LINKDROP_SHUTDOWN_GRACE=raw))


def test_masked_hides_tokens():
    masked = load_config("feed.xml", dict(BASE_ENV)).masked()

    assert PRIVATE_TOKEN not in masked.values()
    assert FEED_TOKEN not in masked.values()
    assert masked["port"] == DEFAULT_PORT


def test_read_logging_config():
    assert read_logging_config({}).level == "INFO"
    assert read_logging_config({}).file is None

    config = read_logging_config({"LINKDROP_LOG": "debug", "LINKDROP_LOG_FILE": "out.log"})
    assert config.level == "debug"
    assert config.file == "out.log"


def test_parse_env_config(tmp_path):
    env_file = tmp_path / "env.xml"
    env_file.write_text(
        """<?xml version="1.0"?>
<env>
  <variable name="LINKDROP_PORT"> 9100 </variable>
  <variable name="LINKDROP_ADDRESS">0.0.0.0</variable>
  <variable name="EMPTY"></variable>
  <variable>orphan</variable>
</env>
""",
        encoding="utf-8",
    )

    assert parse_env_config(str(env_file)) == {
        "LINKDROP_PORT": "9100",
        "LINKDROP_ADDRESS": "0.0.0.0",
    }


def test_parse_env_config_errors(tmp_path):
    broken = tmp_path / "broken.xml"
    broken.write_text("<env><variable", encoding="utf-8")

    assert parse_env_config("") == {}
    with pytest.raises(ValueError):
        parse_env_config(str(broken))
    with pytest.raises(ValueError):
        parse_env_config(str(tmp_path / "missing.xml"))
