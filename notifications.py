from dataclasses import asdict, dataclass
from typing import Optional

from fastapi import Request
from fastapi.responses import Response
from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings

FLASH_COOKIE = "fintrack_flash"
MAX_QUEUED = 5


@dataclass(frozen=True)
class Notice:
    title: str
    description: Optional[str] = None
    variant: str = "default"  # "default" | "destructive"

    @classmethod
    def error(cls, title: str, description: Optional[str] = None) -> "Notice":
        return cls(title=title, description=description, variant="destructive")


def _serializer() -> URLSafeSerializer:
    return URLSafeSerializer(get_settings().secret_key, salt="flash-notice")


def _read_queue(request: Request) -> list[dict]:
    raw = request.cookies.get(FLASH_COOKIE)
    if not raw:
        return []
    try:
        data = _serializer().loads(raw)
    except BadSignature:
        return []
    return data if isinstance(data, list) else []


def flash(request: Request, response: Response, notice: Notice) -> None:
    """Queue ``notice`` for the next rendered page."""
    queue = _read_queue(request)
    queue.append(asdict(notice))
    response.set_cookie(
        FLASH_COOKIE,
        _serializer().dumps(queue[-MAX_QUEUED:]),
        httponly=True,
        samesite="lax",
        secure=get_settings().cookie_secure,
    )


def consume_notices(request: Request) -> list[Notice]:
    notices = []
    for item in _read_queue(request):
        try:
            notices.append(Notice(**item))
        except TypeError:
            continue
    return notices


def clear_notices(request: Request, response: Response) -> None:
    if FLASH_COOKIE in request.cookies:
        response.delete_cookie(FLASH_COOKIE)
