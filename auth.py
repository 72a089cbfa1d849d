import time
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="owner-token")


def generate_owner_token(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValueError("user_id is required")
    return _serializer().dumps({"u": user_id.strip(), "ts": int(time.time())})


def resolve_owner_token(token: Optional[str]) -> Optional[str]:
    """Return the owner id carried by a valid token, otherwise ``None``."""
    if not token:
        return None
    max_age = get_settings().token_max_age_hours * 3600
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        return None
    except BadSignature:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, str) or not user_id.strip():
        return None
    return user_id
