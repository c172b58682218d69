import pytest
from pydantic import ValidationError

from ordersync.core.config import EnvironmentMode, Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.env_mode == EnvironmentMode.DEVELOPMENT
    assert settings.is_development
    assert not settings.use_real_services
    assert settings.expanded_default_limit == 20
    assert settings.expanded_max_limit == 500


def test_env_mode_is_case_insensitive():
    assert Settings(_env_file=None, env_mode="Production").is_production


def test_invalid_env_mode_is_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, env_mode="qa")


def test_ladder_reads_from_environment(monkeypatch):
    monkeypatch.setenv("LOOKBACK_LADDER_MINUTES", "30, 90,,1440")

    assert Settings(_env_file=None).lookback_ladder == [30, 90, 1440]


@pytest.mark.parametrize("ladder", ["60,abc", "0,60", "-5"])
def test_invalid_ladder_is_rejected(ladder):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, lookback_ladder_minutes=ladder)


def test_production_requires_toast_credentials():
    settings = Settings(_env_file=None, env_mode="production", toast_client_id="id")

    assert settings.validate_production_config() == ["TOAST_CLIENT_SECRET", "TOAST_RESTAURANT_GUID"]


def test_development_needs_no_credentials():
    assert Settings(_env_file=None).validate_production_config() == []
