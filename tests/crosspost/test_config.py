import pytest

from crosspost.config import load_settings

PLATFORM_VARS = (
    "LINKEDIN_CLIENT_ID", "TWITTER_CLIENT_ID", "INSTAGRAM_APP_ID", "THREADS_APP_ID",
    "BASE_URL", "HTTP_TIMEOUT_SECONDS", "COMMENT_DELAY_SECONDS", "RETRY_SCOPE",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in PLATFORM_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_platforms_are_optional(clean_env):
    settings = load_settings()
    assert settings.linkedin is None
    assert settings.threads is None
    assert settings.retry_scope == "failed_only"


def test_platform_block_built_from_env(clean_env):
    clean_env.setenv("BASE_URL", "https://app.example.com")
    clean_env.setenv("LINKEDIN_CLIENT_ID", "li-id")
    clean_env.setenv("LINKEDIN_CLIENT_SECRET", "li-secret")
    clean_env.setenv("HTTP_TIMEOUT_SECONDS", "12.5")

    settings = load_settings()

    assert settings.linkedin.client_id == "li-id"
    assert settings.linkedin.redirect_uri == "https://app.example.com/api/social/callback/linkedin"
    assert settings.http_timeout_seconds == 12.5


def test_malformed_timeout_is_reported_like_other_invalid_settings(clean_env):
    clean_env.setenv("HTTP_TIMEOUT_SECONDS", "soon")
    with pytest.raises(RuntimeError, match="Invalid settings"):
        load_settings()


def test_invalid_retry_scope_is_reported(clean_env):
    clean_env.setenv("RETRY_SCOPE", "sometimes")
    with pytest.raises(RuntimeError, match="Invalid settings"):
        load_settings()
