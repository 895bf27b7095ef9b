import pytest

from planner.config.settings import AuthMode, CollaboratorBackend, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "Content Planner"
    assert settings.version == "1.0.0"
    assert settings.environment == "development"
    assert settings.auth_mode == AuthMode.NONE
    assert settings.scheduler_timezone == "UTC"
    assert settings.content_generator == CollaboratorBackend.STUB


def test_job_defaults():
    """Worker and job semantics defaults."""
    settings = Settings()

    assert settings.job_concurrency == 4
    assert settings.job_visibility_timeout_s == 300
    assert settings.job_max_backoff_s == 3600
    assert 0 <= settings.job_backoff_jitter <= 1
    assert settings.reminder_lead_minutes == 60
    assert settings.trial_warning_days == 3
    assert settings.batch_max_count == 50
    assert settings.quota_reset_cron == "0 0 * * *"


def test_production_validation_blocks_none_auth():
    """Test that production environment blocks AUTH_MODE=none."""
    with pytest.raises(ValueError, match="AUTH_MODE=none is not allowed in production"):
        Settings(environment="production", auth_mode=AuthMode.NONE)


def test_production_allows_dev_auth():
    settings = Settings(environment="production", auth_mode=AuthMode.DEV)
    assert settings.auth_mode == AuthMode.DEV


def test_invalid_concurrency_rejected():
    with pytest.raises(ValueError):
        Settings(job_concurrency=0)


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("JOB_CONCURRENCY", "8")
    monkeypatch.setenv("SCHEDULER_TIMEZONE", "Europe/Berlin")

    settings = Settings()

    assert settings.job_concurrency == 8
    assert settings.scheduler_timezone == "Europe/Berlin"


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Content Planner"
