import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import get_settings
from models import LoginSession, Profile, User
from notifications import Notice
from schemas import SignInIn, SignUpIn

logger = logging.getLogger(__name__)

SESSION_COOKIE = "fintrack_session"


class AuthError(ValueError):
    pass


class AuthEvent(str, Enum):
    signed_in = "signed_in"
    signed_out = "signed_out"


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    user_id: int
    email: str
    expires_at: datetime


AuthListener = Callable[[AuthEvent, Optional[AuthSession]], None]


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


class AuthStateNotifier:
    """Fan-out of sign-in / sign-out events to interested holders.

    One instance is shared by the whole app, so listeners run on whichever
    worker thread published the event.
    """

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def notify(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event, session)


class AuthService:
    def __init__(
        self, session: Session, notifier: Optional[AuthStateNotifier] = None
    ) -> None:
        self.session = session
        self.notifier = notifier or AuthStateNotifier()
        settings = get_settings()
        self.max_age = timedelta(hours=settings.session_max_age_hours)
        self.serializer = URLSafeTimedSerializer(
            settings.secret_key, salt="auth-session"
        )

    def sign_up(self, data: SignUpIn) -> AuthSession:
        existing = self.session.scalar(
            select(User.id).where(func.lower(User.email) == data.email.lower())
        )
        if existing:
            raise AuthError("User already registered")
        user = User(email=data.email.lower(), password_hash=hash_password(data.password))
        self.session.add(user)
        self.session.flush()
        self.session.add(
            Profile(
                id=user.id,
                email=user.email,
                full_name=data.full_name,
                currency=get_settings().default_currency,
            )
        )
        self.session.commit()
        logger.info(f"auth_sign_up: user_id={user.id}")
        return self._start_session(user)

    def sign_in_with_password(self, data: SignInIn) -> AuthSession:
        user = self.session.scalar(
            select(User).where(func.lower(User.email) == data.email.lower())
        )
        if not user or not verify_password(data.password, user.password_hash):
            logger.info("auth_sign_in_failed: reason=invalid_credentials")
            raise AuthError("Invalid login credentials")
        return self._start_session(user)

    def _start_session(self, user: User) -> AuthSession:
        now = datetime.utcnow()
        record = LoginSession(
            id=secrets.token_hex(16),
            user_id=user.id,
            created_at=now,
            expires_at=now + self.max_age,
        )
        self.session.add(record)
        self.session.commit()
        auth_session = AuthSession(
            access_token=self.serializer.dumps({"u": user.id, "sid": record.id}),
            user_id=user.id,
            email=user.email,
            expires_at=record.expires_at,
        )
        logger.info(f"auth_sign_in: user_id={user.id}")
        self.notifier.notify(AuthEvent.signed_in, auth_session)
        return auth_session

    def _load_record(self, token: Optional[str]) -> Optional[LoginSession]:
        if not token:
            return None
        try:
            data = self.serializer.loads(
                token, max_age=int(self.max_age.total_seconds())
            )
        except BadSignature:
            return None
        record = self.session.get(LoginSession, data.get("sid"))
        if not record or record.user_id != data.get("u"):
            return None
        return record

    def get_session(self, token: Optional[str]) -> Optional[AuthSession]:
        record = self._load_record(token)
        if not record or record.revoked_at is not None:
            return None
        if record.expires_at <= datetime.utcnow():
            return None
        user = self.session.get(User, record.user_id)
        if not user:
            return None
        return AuthSession(
            access_token=token,
            user_id=user.id,
            email=user.email,
            expires_at=record.expires_at,
        )

    def sign_out(self, token: Optional[str]) -> None:
        record = self._load_record(token)
        if not record or record.revoked_at is not None:
            return
        record.revoked_at = datetime.utcnow()
        self.session.commit()
        logger.info(f"auth_sign_out: user_id={record.user_id}")
        user = self.session.get(User, record.user_id)
        self.notifier.notify(
            AuthEvent.signed_out,
            AuthSession(
                access_token=token,
                user_id=record.user_id,
                email=user.email if user else "",
                expires_at=record.expires_at,
            ),
        )


class SessionHolder:
    """Current session, user and profile for one request.

    Subscribes to the shared notifier for its whole lifetime; ``close`` must be
    called to unsubscribe. Sign-ins only apply to the holder that started them,
    sign-outs apply to every holder carrying the revoked token.
    """

    def __init__(
        self, db: Session, notifier: Optional[AuthStateNotifier] = None
    ) -> None:
        self.db = db
        self.notifier = notifier or AuthStateNotifier()
        self.auth = AuthService(db, self.notifier)
        self.session: Optional[AuthSession] = None
        self.user: Optional[User] = None
        self.profile: Optional[Profile] = None
        self._signing_in = False
        self._unsubscribe: Optional[Callable[[], None]] = self.notifier.subscribe(
            self._on_auth_change
        )

    @property
    def user_id(self) -> Optional[int]:
        return self.session.user_id if self.session else None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    def _on_auth_change(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        if event == AuthEvent.signed_in:
            if self._signing_in and session is not None:
                self._apply(session)
            return
        current = self.session
        if current is not None and session is not None:
            if current.access_token == session.access_token:
                self._clear()

    def _apply(self, session: AuthSession) -> None:
        self.session = session
        self.user = self.db.get(User, session.user_id)
        self.profile = self.db.get(Profile, session.user_id)

    def _clear(self) -> None:
        self.session = None
        self.user = None
        self.profile = None

    def load(self, token: Optional[str]) -> Optional[AuthSession]:
        session = self.auth.get_session(token)
        if session is None:
            self._clear()
        else:
            self._apply(session)
        return session

    def _start(self, action: Callable[[], AuthSession]) -> AuthSession:
        self._signing_in = True
        try:
            return action()
        finally:
            self._signing_in = False

    def sign_in(self, data: SignInIn) -> AuthSession:
        return self._start(lambda: self.auth.sign_in_with_password(data))

    def sign_up(self, data: SignUpIn) -> AuthSession:
        return self._start(lambda: self.auth.sign_up(data))

    def sign_out(self) -> Notice:
        token = self.session.access_token if self.session else None
        self.auth.sign_out(token)
        self._clear()
        return Notice(title="Signed out successfully")

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
