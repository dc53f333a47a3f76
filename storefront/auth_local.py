from datetime import datetime, timedelta, timezone
import secrets
import jwt
from typing import Optional
from .core_settings import Settings

ADMIN_SUBJECT = "admin"

def check_admin_password(candidate: str, settings: Settings) -> bool:
    """Static shared-secret comparison; gates the admin panel, nothing more."""
    return secrets.compare_digest(candidate.encode(), settings.ADMIN_PASSWORD.encode())

def create_access_token(settings: Settings, subject: str = ADMIN_SUBJECT) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + timedelta(minutes=settings.ADMIN_TOKEN_MINUTES)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str, settings: Settings) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None
