"""Tests for gateway settings and the production safety check."""

import pytest

from clinica_gateway.common.config import GatewaySettings, get_settings

SECURE = {
    "hmac_key": "a-real-hmac-key",
    "api_key": "a-real-api-key",
    "soap_password": "a-real-soap-password",
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ENVIRONMENT", "HMAC_KEY", "API_KEY", "SOAP_PASSWORD", "SOAP_ENABLED", "DB_URL"):
        monkeypatch.delenv(f"CLINICA_{name}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestGatewaySettings:
    def test_defaults(self):
        settings = GatewaySettings()
        assert settings.soap_enabled is True
        assert settings.create_schema is False
        assert settings.admin_user_type_ids == [1, 4]

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CLINICA_SOAP_ENABLED", "false")
        monkeypatch.setenv("CLINICA_SOAP_TIMEOUT", "5")
        settings = GatewaySettings()
        assert settings.soap_enabled is False
        assert settings.soap_timeout == 5.0

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()


class TestValidateForProduction:
    def test_development_warns(self):
        with pytest.warns(UserWarning, match="insecure default credentials"):
            GatewaySettings().validate_for_production()

    def test_production_refuses_defaults(self):
        settings = GatewaySettings(environment="production")
        with pytest.raises(RuntimeError, match="CLINICA_HMAC_KEY"):
            settings.validate_for_production()

    def test_production_names_each_insecure_field(self):
        settings = GatewaySettings(environment="production", **{**SECURE, "soap_password": "root"})
        with pytest.raises(RuntimeError) as exc:
            settings.validate_for_production()
        assert "CLINICA_SOAP_PASSWORD" in str(exc.value)
        assert "CLINICA_API_KEY" not in str(exc.value)

    def test_production_with_secrets(self, recwarn):
        GatewaySettings(environment="production", **SECURE).validate_for_production()
        assert not [w for w in recwarn if issubclass(w.category, UserWarning)]
