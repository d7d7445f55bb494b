import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings

ANONYMOUS_USER_ID = 0


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.secret_key, salt="csrf-token")


def generate_csrf_token(
    user_id: Optional[int] = None, max_age_hours: int = 2
) -> str:
    serializer = _serializer()
    timestamp = int(time.time())
    token_data = {
        "u": user_id or ANONYMOUS_USER_ID,
        "ts": timestamp,
        "exp": timestamp + max_age_hours * 3600,
    }
    return serializer.dumps(token_data)


def validate_csrf_token(token: Optional[str], user_id: Optional[int] = None) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return False

    if data.get("u") != (user_id or ANONYMOUS_USER_ID):
        return False
    return int(time.time()) <= data.get("exp", 0)
