import json
import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from prepcoach import env_utils
from prepcoach.config import (
    LINKEDIN_USERINFO_URL,
    PROFILE_MODE_LEGACY,
    AuthSettings,
    load_auth_settings,
)
from prepcoach.logging_config import JsonFormatter, SecretMetaFilter, mask, req_id_var
from prepcoach.startup.config_guard import ConfigError, assert_auth_config


class TestLoadAuthSettings:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            s = load_auth_settings()
        assert s.callback_path == "/auth/callback"
        assert s.max_attempts == 3
        assert s.attempt_ttl_seconds == 600
        assert s.http_timeout == 10.0
        assert s.loopback_hosts == ("localhost:5000",)
        assert s.scope == "openid profile email"
        assert s.session_backend == "sql"
        assert s.endpoints.userinfo_url == LINKEDIN_USERINFO_URL
        assert not s.has_credentials

    def test_env_overrides(self):
        env = {
            "LINKEDIN_CLIENT_ID": "cid",
            "LINKEDIN_CLIENT_SECRET": "secret",
            "APP_DEPLOY_DOMAINS": "a.example.com, b.example.com,",
            "OAUTH_CALLBACK_PATH": "oauth/done",
            "OAUTH_MAX_ATTEMPTS": "5",
            "REDIS_URL": "redis://localhost:6379/0",
            "COOKIES_SECURE": "0",
        }
        with patch.dict(os.environ, env, clear=True):
            s = load_auth_settings()
        assert s.has_credentials
        assert s.deploy_domains == ("a.example.com", "b.example.com")
        assert s.callback_path == "/oauth/done"
        assert s.max_attempts == 5
        assert s.session_backend == "redis"
        assert s.cookies_secure is False

    def test_legacy_mode_switches_default_scope(self):
        with patch.dict(os.environ, {"LINKEDIN_PROFILE_MODE": "legacy"}, clear=True):
            s = load_auth_settings()
        assert s.profile_mode == PROFILE_MODE_LEGACY
        assert s.scope == "r_liteprofile r_emailaddress"

    def test_bad_values_fail_loudly(self):
        with patch.dict(os.environ, {"LINKEDIN_PROFILE_MODE": "v3"}, clear=True):
            with pytest.raises(RuntimeError):
                load_auth_settings()
        with patch.dict(os.environ, {"OAUTH_MAX_ATTEMPTS": "three"}, clear=True):
            with pytest.raises(RuntimeError):
                load_auth_settings()



class TestLoadEnv:
    @pytest.fixture
    def example_only(self, tmp_path, monkeypatch):
        monkeypatch.setattr(env_utils, "_ENV_PATH", tmp_path / "missing.env")
        monkeypatch.setattr(env_utils, "_ENV_EXAMPLE_PATH", Path(__file__).resolve().parents[2] / ".env.example")

    def test_redis_url_alone_selects_redis_backend(self, example_only):
        with patch.dict(os.environ, {"REDIS_URL": "redis://cache:6379/0"}, clear=True):
            env_utils.load_env(force=True)
            s = load_auth_settings()
        assert s.session_backend == "redis"
        assert s.redis_url == "redis://cache:6379/0"

    def test_example_defaults_to_sql_without_redis(self, example_only):
        with patch.dict(os.environ, {}, clear=True):
            env_utils.load_env(force=True)
            s = load_auth_settings()
            assert "REDIS_URL" not in os.environ
        assert s.session_backend == "sql"
        assert s.callback_path == "/auth/callback"

    def test_blank_example_values_are_not_copied(self, tmp_path, monkeypatch):
        example = tmp_path / ".env.example"
        example.write_text("SESSION_BACKEND=\nLOG_LEVEL=DEBUG\n")
        monkeypatch.setattr(env_utils, "_ENV_PATH", tmp_path / "missing.env")
        monkeypatch.setattr(env_utils, "_ENV_EXAMPLE_PATH", example)
        with patch.dict(os.environ, {}, clear=True):
            env_utils.load_env(force=True)
            assert "SESSION_BACKEND" not in os.environ
            assert os.environ["LOG_LEVEL"] == "DEBUG"


class TestConfigGuard:
    def test_prod_requires_credentials(self):
        with patch.dict(os.environ, {"ENV": "production"}, clear=True):
            with pytest.raises(ConfigError) as ei:
                assert_auth_config(AuthSettings(session_backend="redis", redis_url="redis://r"))
        assert "LINKEDIN_CLIENT_ID" in str(ei.value)

    def test_prod_rejects_memory_sessions(self):
        s = AuthSettings(client_id="c", client_secret="s", session_backend="memory")
        with patch.dict(os.environ, {"ENV": "prod"}, clear=True):
            with pytest.raises(ConfigError):
                assert_auth_config(s)

    def test_prod_ok(self):
        s = AuthSettings(client_id="c", client_secret="s", session_backend="sql")
        with patch.dict(os.environ, {"ENV": "prod"}, clear=True):
            assert_auth_config(s)

    def test_dev_only_warns(self, caplog):
        with patch.dict(os.environ, {"ENV": "dev"}, clear=True):
            with caplog.at_level(logging.WARNING, logger="prepcoach.startup.config_guard"):
                assert_auth_config(AuthSettings(session_backend="memory"))
        assert "LINKEDIN_CLIENT_ID is not set" in caplog.text


class TestLogging:
    def _record(self, meta):
        record = logging.LogRecord("prepcoach.test", logging.INFO, __file__, 1, "hello", None, None)
        record.meta = meta
        return record

    def test_json_formatter_shape(self):
        token = req_id_var.set("req-42")
        try:
            out = json.loads(JsonFormatter().format(self._record({"session_id": "s1", "n": 1})))
        finally:
            req_id_var.reset(token)
        assert out["msg"] == "hello"
        assert out["level"] == "INFO"
        assert out["component"] == "prepcoach.test"
        assert out["req_id"] == "req-42"
        assert out["meta"] == {"session_id": "s1", "n": 1}
        assert out["session_id"] == "s1"

    def test_secret_meta_is_masked(self):
        record = self._record({"access_token": "AQX1234567890secret", "redirect_uri": "https://a/cb"})
        SecretMetaFilter().filter(record)
        assert "secret" not in record.meta["access_token"]
        assert record.meta["redirect_uri"] == "https://a/cb"

    def test_mask(self):
        assert mask("abcdefghijkl") == "abcdef…[12]"
        assert mask(None) == ""
