import pytest

from pebot.config import Config, ConfluenceConfig, RunSettings, _parse_priorities

REQUIRED_ENV = {
    "SLACK_APP_TOKEN": "xapp-1",
    "SLACK_BOT_TOKEN": "xoxb-1",
    "AZURE_OPENAI_URL": "https://pe-openai.openai.azure.com/",
    "AZURE_OPENAI_KEY": "secret",
}


@pytest.fixture
def env(monkeypatch):
    for key in (
        "AZURE_OPENAI_USE_MANAGED_IDENTITY",
        "RUN_POLL_INITIAL_DELAY_MS",
        "RUN_POLL_MAX_DELAY_MS",
        "RUN_POLL_MAX_POLLS",
        "SLACK_MAX_SESSIONS",
    ):
        monkeypatch.delenv(key, raising=False)
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


def test_complete_configuration_validates(env) -> None:
    cfg = Config()

    assert cfg.validate() == []
    assert cfg.assistant.url == "https://pe-openai.openai.azure.com"


def test_missing_tokens_are_reported(env) -> None:
    env.setenv("SLACK_APP_TOKEN", "")
    env.setenv("AZURE_OPENAI_KEY", "")

    errors = Config().validate()

    assert "SLACK_APP_TOKEN is required" in errors
    assert "AZURE_OPENAI_KEY is required when not using a managed identity" in errors


def test_slack_tokens_optional_for_cli(env) -> None:
    env.setenv("SLACK_BOT_TOKEN", "")

    assert Config().validate(require_slack=False) == []


def test_managed_identity_does_not_need_a_key(env) -> None:
    env.setenv("AZURE_OPENAI_KEY", "")
    env.setenv("AZURE_OPENAI_USE_MANAGED_IDENTITY", "true")

    cfg = Config()

    assert cfg.assistant.use_managed_identity
    assert cfg.validate() == []


def test_invalid_url(env) -> None:
    env.setenv("AZURE_OPENAI_URL", "pe-openai.openai.azure.com")

    assert Config().validate() == ["AZURE_OPENAI_URL is not a valid URL: pe-openai.openai.azure.com"]


def test_run_settings_convert_milliseconds(env) -> None:
    env.setenv("RUN_POLL_INITIAL_DELAY_MS", "250")
    env.setenv("RUN_POLL_MAX_DELAY_MS", "2000")
    env.setenv("RUN_POLL_MAX_POLLS", "7")

    run = RunSettings()

    assert (run.initial_delay, run.max_delay, run.max_polls) == (0.25, 2.0, 7)


def test_poll_limits_are_validated(env) -> None:
    env.setenv("RUN_POLL_INITIAL_DELAY_MS", "5000")
    env.setenv("RUN_POLL_MAX_DELAY_MS", "1000")
    env.setenv("RUN_POLL_MAX_POLLS", "0")

    errors = Config().validate()

    assert "RUN_POLL_MAX_DELAY_MS must be >= RUN_POLL_INITIAL_DELAY_MS > 0" in errors
    assert "RUN_POLL_MAX_POLLS must be at least 1" in errors


def test_parse_priorities_skips_malformed_entries() -> None:
    assert _parse_priorities("PE:10, OPS:5,bad,X:y") == {"PE": 10, "OPS": 5}
    assert _parse_priorities("") == {}


def test_confluence_enabled_and_base_url() -> None:
    assert not ConfluenceConfig(domain="acme.atlassian.net", email="", api_token="t", space_priorities={}).enabled

    confluence = ConfluenceConfig(domain="acme.atlassian.net/", email="bot@acme.com", api_token="t", space_priorities={})
    assert confluence.enabled
    assert confluence.base_url == "https://acme.atlassian.net"
