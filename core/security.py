from datetime import datetime, timedelta, timezone

from jose import jwt, JWTError

from core.config import settings


def create_access_token(user_id):
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRE_MINUTES)
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> str | None:
    """Profile id carried by an access token, or None when it does not verify."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("scope") == "file":
        return None
    return payload.get("sub")


def create_file_token(file_path: str, expires_in: int = None):
    expires_in = expires_in if expires_in is not None else settings.ATTACHMENT_URL_EXPIRE_SECONDS
    expire = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    payload = {"path": file_path, "scope": "file", "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_file_token(token: str) -> str | None:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("scope") != "file":
        return None
    return payload.get("path")
