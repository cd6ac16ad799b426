"""Clinica-Gateway configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "hmac_key": "insecure-hmac-key-change-me",
    "api_key": "insecure-admin-key-change-me",
    "soap_password": "root",
}


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLINICA_")

    environment: str = "development"
    hmac_key: str = "insecure-hmac-key-change-me"

    # Database (the LibreClinica schema is owned by LibreClinica itself)
    db_url: str = "sqlite+aiosqlite:///./data/clinica.db"
    create_schema: bool = False

    # LibreClinica SOAP web services
    soap_enabled: bool = True
    soap_url: str = "http://localhost:8080/LibreClinica/ws"
    soap_username: str = "root"
    soap_password: str = "root"
    soap_timeout: float = 30.0  # seconds, single attempt

    # API
    api_title: str = "Clinica-Gateway"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:4200"]
    log_level: str = "INFO"

    # Access control: user_type ids that bypass study ownership checks
    admin_user_type_ids: list[int] = [1, 4]
    admin_user_type_names: list[str] = ["admin", "sysadmin"]

    # Opt-in: when set, signatures recorded on the database path re-check the
    # signer's password against user_account.passwd. Off by default, the
    # calling application authenticates the signer before the request.
    verify_signer_credentials: bool = False

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"CLINICA_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default credentials: set CLINICA_HMAC_KEY, "
                "CLINICA_API_KEY, CLINICA_SOAP_PASSWORD for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> GatewaySettings:
    settings = GatewaySettings()
    settings.validate_for_production()
    return settings
