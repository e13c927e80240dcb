"""
Groundwater DSS Security Utilities

JWT decoding for the API layer. Token issuance lives with the external
identity service; this module only verifies what it signed.
"""

from jose import JWTError, jwt

from core.config import get_settings


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a locally signed access token."""
    runtime_settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None

    # Every downstream query is org-scoped; a token without an org is useless.
    if not payload.get("sub") or not payload.get("org_id"):
        return None
    return payload
