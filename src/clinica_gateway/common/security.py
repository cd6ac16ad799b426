"""API key and acting-user dependencies.

Token issuance and verification happen upstream; the authenticating proxy
forwards the resolved LibreClinica user in two headers.
"""

import hashlib
import hmac
from dataclasses import dataclass

from fastapi import Header, HTTPException


@dataclass(frozen=True)
class ActingUser:
    """LibreClinica account on whose behalf a request runs."""
    user_id: int
    username: str


async def require_api_key(
    x_clinica_api_key: str = Header(..., alias="X-Clinica-Api-Key"),
) -> str:
    """FastAPI dependency that validates the gateway API key from header."""
    from clinica_gateway.common.config import get_settings

    settings = get_settings()
    if x_clinica_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_clinica_api_key


async def resolve_acting_user(
    x_clinica_user_id: int = Header(..., alias="X-Clinica-User-Id", ge=1),
    x_clinica_username: str = Header(..., alias="X-Clinica-Username", min_length=1),
) -> ActingUser:
    """FastAPI dependency returning the forwarded LibreClinica user."""
    return ActingUser(user_id=x_clinica_user_id, username=x_clinica_username)


def verify_password(plain: str, stored: str | None) -> bool:
    """Check a password against a LibreClinica ``user_account.passwd`` value.

    Accounts carry either a bcrypt hash or the legacy unsalted MD5 hex digest.
    """
    if not stored or not plain:
        return False
    if stored.startswith("$2"):
        import bcrypt

        try:
            return bcrypt.checkpw(plain.encode("utf-8"), stored.encode("utf-8"))
        except ValueError:
            return False
    digest = hashlib.md5(plain.encode("utf-8")).hexdigest()
    return hmac.compare_digest(digest, stored.lower())
