from campuslink.config import Environment, Settings, get_settings, reset_settings_cache


def test_defaults():
    settings = Settings(jwt_secret="x")
    assert settings.node_env == Environment.DEVELOPMENT
    assert settings.jwt_expire_days == 30
    assert settings.jwt_cookie_expire_days == 30
    assert settings.reset_token_ttl_minutes == 60
    assert settings.sensitive_op_max_attempts == 5
    assert settings.sensitive_op_window_seconds == 900
    assert settings.forgot_password_reveals_unknown_email is False
    assert not settings.is_production


def test_missing_jwt_secret_is_generated():
    first = Settings()
    second = Settings()
    assert first.jwt_secret and len(first.jwt_secret) >= 64
    assert first.jwt_secret != second.jwt_secret


def test_from_env_reads_declared_names(monkeypatch):
    monkeypatch.setenv("NODE_ENV", "Production")
    monkeypatch.setenv("JWT_EXPIRE_DAYS", "7")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.edu, https://b.edu")
    monkeypatch.setenv("REDIS_URL", "  ")
    settings = Settings.from_env()
    assert settings.is_production
    assert settings.jwt_expire_days == 7
    assert settings.cors_allow_origins == ["https://a.edu", "https://b.edu"]
    assert settings.redis_url is None


def test_settings_cache_resets(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("SENSITIVE_OP_MAX_ATTEMPTS", "3")
    reset_settings_cache()
    assert get_settings().sensitive_op_max_attempts == 3
    reset_settings_cache()
