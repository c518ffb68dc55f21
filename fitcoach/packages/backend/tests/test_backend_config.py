"""BackendConfig + load_backend_config 单元测试

验证环境变量映射、默认值、派生 URL。
"""

import pytest
from fitcoach.backend.config import DEFAULT_PUSH_RELAY_URL, BackendConfig, load_backend_config
from pydantic import SecretStr, ValidationError

_ENV_VARS = (
    "FITCOACH_BACKEND_URL",
    "FITCOACH_BACKEND_ANON_KEY",
    "FITCOACH_PUSH_RELAY_URL",
    "FITCOACH_BACKEND_TIMEOUT_S",
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestBackendConfig:
    """BackendConfig 数据模型测试"""

    def test_default_values(self):
        config = BackendConfig()
        assert config.base_url == "http://localhost:54321"
        assert config.anon_key.get_secret_value() == ""
        assert config.push_relay_url == DEFAULT_PUSH_RELAY_URL
        assert config.timeout_s == 15

    def test_derived_urls_https(self):
        config = BackendConfig(base_url="https://proj.example.co/")
        assert config.rest_url == "https://proj.example.co/rest/v1"
        assert config.auth_url == "https://proj.example.co/auth/v1"
        assert config.realtime_url == "wss://proj.example.co/realtime/v1/websocket"

    def test_derived_realtime_url_http(self):
        config = BackendConfig(base_url="http://localhost:54321")
        assert config.realtime_url == "ws://localhost:54321/realtime/v1/websocket"

    def test_timeout_min_value(self):
        with pytest.raises(ValidationError):
            BackendConfig(timeout_s=0)

    def test_anon_key_not_in_repr(self):
        config = BackendConfig(anon_key=SecretStr("anon-secret"))
        assert "anon-secret" not in repr(config)


class TestLoadBackendConfig:
    """load_backend_config() 环境变量映射测试"""

    def test_default_when_no_env(self, clean_env):
        config = load_backend_config()
        assert config.base_url == "http://localhost:54321"
        assert config.timeout_s == 15

    def test_env_mapping(self, clean_env):
        clean_env.setenv("FITCOACH_BACKEND_URL", "https://proj.example.co")
        clean_env.setenv("FITCOACH_BACKEND_ANON_KEY", "anon-123")
        clean_env.setenv("FITCOACH_PUSH_RELAY_URL", "http://relay.local/push")
        clean_env.setenv("FITCOACH_BACKEND_TIMEOUT_S", "5")

        config = load_backend_config()
        assert config.base_url == "https://proj.example.co"
        assert config.anon_key.get_secret_value() == "anon-123"
        assert config.push_relay_url == "http://relay.local/push"
        assert config.timeout_s == 5

    def test_invalid_timeout_falls_back(self, clean_env):
        """非数字超时回退到默认值"""
        clean_env.setenv("FITCOACH_BACKEND_TIMEOUT_S", "soon")
        assert load_backend_config().timeout_s == 15
