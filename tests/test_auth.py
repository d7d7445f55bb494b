from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from auth import (
    AuthError,
    AuthEvent,
    AuthService,
    AuthStateNotifier,
    SessionHolder,
    hash_password,
    verify_password,
)
from database import Base
from models import LoginSession, Profile
from schemas import SignInIn, SignUpIn


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _sign_up(service: AuthService, email: str = "ada@example.com"):
    return service.sign_up(
        SignUpIn(email=email, password="s3cret-pass", full_name="Ada Lovelace")
    )


def test_password_hashing_round_trip() -> None:
    hashed = hash_password("correct horse")
    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)


def test_sign_up_creates_profile_and_session() -> None:
    with _session() as session:
        service = AuthService(session)
        auth_session = _sign_up(service, "Ada@Example.com")

        profile = session.get(Profile, auth_session.user_id)
        assert profile.email == "ada@example.com"
        assert profile.full_name == "Ada Lovelace"
        assert profile.currency == "$"
        assert service.get_session(auth_session.access_token).user_id == profile.id


def test_duplicate_sign_up_is_rejected() -> None:
    with _session() as session:
        service = AuthService(session)
        _sign_up(service)
        with pytest.raises(AuthError, match="User already registered"):
            _sign_up(service, "ADA@example.com")


def test_sign_in_with_wrong_password() -> None:
    with _session() as session:
        service = AuthService(session)
        _sign_up(service)
        with pytest.raises(AuthError, match="Invalid login credentials"):
            service.sign_in_with_password(
                SignInIn(email="ada@example.com", password="not-the-one")
            )
        assert service.sign_in_with_password(
            SignInIn(email="ada@example.com", password="s3cret-pass")
        ).email == "ada@example.com"


def test_sign_out_revokes_and_expired_sessions_are_rejected() -> None:
    with _session() as session:
        service = AuthService(session)
        first = _sign_up(service)
        second = service.sign_in_with_password(
            SignInIn(email="ada@example.com", password="s3cret-pass")
        )

        service.sign_out(first.access_token)
        assert service.get_session(first.access_token) is None
        assert service.get_session(second.access_token) is not None

        for record in session.query(LoginSession).all():
            record.expires_at = datetime.utcnow() - timedelta(minutes=1)
        session.commit()
        assert service.get_session(second.access_token) is None
        assert service.get_session("garbage") is None
        assert service.get_session(None) is None


def test_notifier_subscription_lifecycle() -> None:
    notifier = AuthStateNotifier()
    seen = []
    unsubscribe = notifier.subscribe(lambda event, s: seen.append(event))

    notifier.notify(AuthEvent.signed_out, None)
    unsubscribe()
    notifier.notify(AuthEvent.signed_out, None)

    assert seen == [AuthEvent.signed_out]
    assert notifier.listener_count == 0


def test_session_holder_tracks_auth_changes() -> None:
    with _session() as session:
        notifier = AuthStateNotifier()
        holder = SessionHolder(session, notifier)
        assert holder.load(None) is None
        assert not holder.is_authenticated

        idle = SessionHolder(session, notifier)
        holder.sign_up(
            SignUpIn(email="grace@example.com", password="hopper!", full_name="Grace")
        )
        assert holder.is_authenticated
        assert holder.profile.full_name == "Grace"
        # someone else signing in does not log this holder in
        assert not idle.is_authenticated

        token = holder.session.access_token
        other = SessionHolder(session, notifier)
        assert other.load(token).email == "grace@example.com"
        assert other.profile.email == "grace@example.com"

        idle.sign_up(
            SignUpIn(email="alan@example.com", password="enigma!", full_name="Alan")
        )

        notice = holder.sign_out()
        assert notice.title == "Signed out successfully"
        assert holder.session is None and holder.profile is None
        # the holder sharing the revoked token is cleared without reloading
        assert other.session is None and other.profile is None
        assert other.load(token) is None
        # a different user's session is untouched
        assert idle.profile.email == "alan@example.com"

        for item in (holder, other, idle):
            item.close()
        assert notifier.listener_count == 0
