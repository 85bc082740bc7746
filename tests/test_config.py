import pytest

from apiprobe.core.config import AUTO_CONCURRENCY_CAP, ProbeSettings, default_settings, load_settings
from apiprobe.core.domain.models import ProbePolicy
from apiprobe.core.errors import ConfigurationError


def test_defaults():
    settings = ProbeSettings()

    assert settings.http_timeout_seconds == 10.0
    assert settings.max_retries == 3
    assert settings.retry_base_delay_seconds == 1.0
    assert settings.validate_responses is True
    assert settings.optional_property_probability == 0.5


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("APIPROBE_MAX_RETRIES", "5")
    monkeypatch.setenv("apiprobe_verbose", "true")

    settings = ProbeSettings()

    assert settings.max_retries == 5
    assert settings.verbose is True


def test_auto_concurrency_is_capped():
    auto = ProbeSettings(max_concurrency=0).effective_concurrency()

    assert 1 <= auto <= AUTO_CONCURRENCY_CAP
    assert ProbeSettings(max_concurrency=25).effective_concurrency() == 25


def test_invalid_values_become_configuration_errors():
    with pytest.raises(ConfigurationError) as info:
        load_settings(max_retries=11, http_timeout_seconds=0)

    assert len(info.value.problems) == 2


def test_policy_from_settings_with_overrides():
    settings = ProbeSettings(max_concurrency=4, max_retries=1, http_timeout_seconds=2.5)

    policy = ProbePolicy.from_settings(settings, verbose=True)

    assert policy.concurrency_limit == 4
    assert policy.max_retries == 1
    assert policy.request_timeout == 2.5
    assert policy.verbose is True


def test_default_settings_ignore_environment_and_dotenv(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("APIPROBE_ARRAY_LENGTH=7\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APIPROBE_MAX_RETRIES", "99")

    settings = default_settings()

    assert settings.max_retries == 3
    assert settings.array_length == 2
    assert settings.effective_concurrency() >= 1


def test_load_settings_reads_dotenv(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("APIPROBE_ARRAY_LENGTH=7\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    assert load_settings().array_length == 7
