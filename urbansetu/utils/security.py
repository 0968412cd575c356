from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import time
import uuid

import bcrypt
from jose import JWTError, jwt

from urbansetu.core.config import get_settings
from urbansetu.core.exceptions import AuthenticationError, ValidationError
from urbansetu.models.user_model import PASSWORD_MAX_BYTES


def verify_password(plain_password: str, hashed_password: str) -> bool:
    # bcrypt requires bytes
    if isinstance(plain_password, str):
        plain_password = plain_password.encode('utf-8')
    if isinstance(hashed_password, str):
        hashed_password = hashed_password.encode('utf-8')
    if len(plain_password) > PASSWORD_MAX_BYTES:
        # No stored hash can match a password registration would have refused
        return False
    try:
        return bcrypt.checkpw(plain_password, hashed_password)
    except ValueError:
        # malformed stored hash
        return False


def get_password_hash(password: str) -> str:
    if isinstance(password, str):
        password = password.encode('utf-8')
    if len(password) > PASSWORD_MAX_BYTES:
        raise ValidationError(
            "Password is too long",
            errors={"password": f"Password must be at most {PASSWORD_MAX_BYTES} bytes"},
        )
    return bcrypt.hashpw(password, bcrypt.gensalt()).decode('utf-8')


def create_access_token(user_id: str, user_type: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {
        "sub": str(user_id),
        "type": user_type,
        "jti": uuid.uuid4().hex,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verified claims; AuthenticationError on a bad signature, expiry or missing subject."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError(f"Could not validate credentials: {e}")
    if not payload.get("sub") or not payload.get("jti"):
        raise AuthenticationError()
    return payload


def seconds_until_expiry(payload: Dict[str, Any]) -> int:
    exp = payload.get("exp")
    if exp is None:
        return 0
    return max(0, int(exp - time.time()))
