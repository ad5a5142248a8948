"""
Issue / consume lifecycle for verification, password-reset and invitation tokens.
"""

import hashlib
import threading
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from conftest import token_from
from familybudget.config import Settings
from familybudget.errors import (
    ConflictError,
    DispatchError,
    InvalidTokenError,
    TokenExpiredError,
    ValidationError,
)
from familybudget.models.budget import MonthlyOverview, UserIncome
from familybudget.models.email_token import EmailToken, TokenKind
from familybudget.models.user import User
from familybudget.services.passwords import verify_password
from familybudget.services.tokens import TokenConsumer, hash_token


def _rows(session, kind=None):
    session.expire_all()
    q = select(EmailToken)
    if kind is not None:
        q = q.where(EmailToken.kind == kind)
    return list(session.exec(q).all())


def _invite(issuer, inviter, email="b@example.com"):
    return issuer.issue(
        TokenKind.INVITATION,
        email,
        family_id=inviter.family_id,
        invited_by_user_id=inviter.id,
        context={"inviter_name": inviter.name, "family_name": "Test Family"},
    )


class TestIssuer:
    @pytest.mark.parametrize(
        "kind,window",
        [
            (TokenKind.VERIFICATION, timedelta(hours=24)),
            (TokenKind.PASSWORD_RESET, timedelta(hours=1)),
        ],
    )
    def test_expiry_window_per_kind(self, issuer, clock, kind, window):
        result = issuer.issue(kind, "a@example.com")
        assert result.record.expires_at == clock() + window

    def test_invitation_window_is_seven_days(self, issuer, clock, make_user):
        inviter = make_user("owner@example.com")
        result = _invite(issuer, inviter)
        assert result.record.expires_at == clock() + timedelta(days=7)
        assert result.record.family_id == inviter.family_id
        assert result.record.invited_by_user_id == inviter.id

    def test_only_hash_is_stored(self, issuer, mailer):
        result = issuer.issue(TokenKind.VERIFICATION, "a@example.com")
        raw = token_from(mailer.outbox[-1])

        assert raw == result.token
        assert len(raw) >= 43  # 32 random bytes, urlsafe base64
        assert result.record.token_hash == hashlib.sha256(raw.encode()).hexdigest()
        assert raw not in result.record.token_hash

    def test_link_points_at_the_flow_page(self, issuer, mailer):
        issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")
        sent = mailer.outbox[-1]
        assert sent.link.startswith("http://app.test/auth/reset-password?token=")
        assert "1 hour" in sent.html

    def test_email_is_canonicalized(self, issuer):
        result = issuer.issue(TokenKind.VERIFICATION, "  A@Example.COM ")
        assert result.record.email == "a@example.com"

    def test_reset_not_reissued_while_live(self, issuer, session, mailer):
        first = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")
        second = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")

        assert second.already_pending is True
        assert second.token is None
        assert second.record.id == first.record.id
        assert len(_rows(session, TokenKind.PASSWORD_RESET)) == 1
        assert len(mailer.outbox) == 1

    def test_reset_reissued_after_expiry(self, issuer, session, clock):
        issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")
        clock.advance(minutes=61)
        again = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")

        assert again.already_pending is False
        # the stale row is only removed when someone presents it
        assert len(_rows(session, TokenKind.PASSWORD_RESET)) == 2

    def test_reset_reissued_at_exact_expiry(self, issuer, clock):
        first = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")
        clock.now = first.record.expires_at

        assert issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com").already_pending is False

    def test_verification_is_not_guarded(self, issuer, session):
        issuer.issue(TokenKind.VERIFICATION, "a@example.com")
        issuer.issue(TokenKind.VERIFICATION, "a@example.com")
        assert len(_rows(session, TokenKind.VERIFICATION)) == 2

    def test_invitation_guard_is_per_family(self, issuer, make_user):
        one = make_user("one@example.com")
        two = make_user("two@example.com")

        assert _invite(issuer, one).already_pending is False
        assert _invite(issuer, one).already_pending is True
        assert _invite(issuer, two).already_pending is False

    def test_dispatch_failure_keeps_token(self, issuer, session, mailer):
        mailer.fail = True
        with pytest.raises(DispatchError):
            issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")

        assert len(_rows(session, TokenKind.PASSWORD_RESET)) == 1
        assert mailer.outbox == []

    def test_missing_email_rejected(self, issuer):
        with pytest.raises(ValidationError):
            issuer.issue(TokenKind.VERIFICATION, "   ")


class TestPasswordReset:
    def test_reset_within_window_then_replay(self, issuer, consumer, clock, make_user, session):
        make_user("a@example.com", password="oldpass1")
        token = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com").token

        clock.advance(minutes=30)
        user = consumer.reset_password(token, "newpass1")

        assert verify_password("newpass1", user.password_hash)
        assert not verify_password("oldpass1", user.password_hash)
        assert _rows(session) == []

        with pytest.raises(InvalidTokenError):
            consumer.reset_password(token, "newpass2")

    def test_expired_is_deleted_then_invalid(self, issuer, consumer, clock, make_user, session):
        make_user("a@example.com")
        token = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com").token

        clock.advance(hours=2)
        with pytest.raises(TokenExpiredError):
            consumer.reset_password(token, "newpass1")
        assert _rows(session) == []

        with pytest.raises(InvalidTokenError):
            consumer.reset_password(token, "newpass1")

    def test_expired_at_exact_expiry(self, issuer, consumer, clock, make_user, session):
        make_user("a@example.com")
        result = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com")

        clock.now = result.record.expires_at - timedelta(microseconds=1)
        assert result.record.is_expired(clock()) is False

        clock.now = result.record.expires_at
        with pytest.raises(TokenExpiredError):
            consumer.reset_password(result.token, "newpass1")
        assert _rows(session) == []

    def test_short_password_fails_before_lookup(self, consumer, monkeypatch):
        def _boom(*args, **kwargs):
            raise AssertionError("token lookup should not happen")

        monkeypatch.setattr(consumer, "_lookup", _boom)
        with pytest.raises(ValidationError):
            consumer.reset_password("whatever-token", "12345")

    def test_unknown_token(self, consumer):
        with pytest.raises(InvalidTokenError):
            consumer.reset_password("not-a-real-token", "newpass1")

    def test_wrong_kind_is_invalid_and_kept(self, issuer, consumer, make_user, session):
        make_user("a@example.com", verified=False)
        token = issuer.issue(TokenKind.VERIFICATION, "a@example.com").token

        with pytest.raises(InvalidTokenError):
            consumer.reset_password(token, "newpass1")
        assert len(_rows(session, TokenKind.VERIFICATION)) == 1


class TestVerification:
    def test_marks_user_verified(self, issuer, consumer, clock, make_user):
        make_user("a@example.com", verified=False)
        token = issuer.issue(TokenKind.VERIFICATION, "a@example.com").token

        clock.advance(hours=3)
        user = consumer.verify_email(token)

        assert user.is_verified is True
        assert user.verified_at == clock()

    def test_expired_after_a_day(self, issuer, consumer, clock, make_user, session):
        make_user("a@example.com", verified=False)
        token = issuer.issue(TokenKind.VERIFICATION, "a@example.com").token

        clock.advance(hours=24, seconds=1)
        with pytest.raises(TokenExpiredError):
            consumer.verify_email(token)
        assert _rows(session) == []

    def test_missing_token(self, consumer):
        with pytest.raises(ValidationError):
            consumer.verify_email("")


class TestInvitation:
    def test_accept_creates_verified_member(self, issuer, consumer, clock, make_user):
        inviter = make_user("owner@example.com", name="Olive")
        result = _invite(issuer, inviter)
        # the row is gone once consumed
        invited_at = result.record.created_at

        clock.advance(days=2)
        user = consumer.accept_invitation(result.token, "Bea", "secret12")

        assert user.email == "b@example.com"
        assert user.family_id == inviter.family_id
        assert user.is_verified is True
        assert user.invited_by_user_id == inviter.id
        assert user.invited_at == invited_at
        assert verify_password("secret12", user.password_hash)

    def test_expired_after_eight_days(self, issuer, consumer, clock, make_user, session):
        inviter = make_user("owner@example.com")
        token = _invite(issuer, inviter).token

        clock.advance(days=8)
        with pytest.raises(TokenExpiredError):
            consumer.accept_invitation(token, "Bea", "secret12")
        assert _rows(session, TokenKind.INVITATION) == []

    def test_conflict_keeps_token_by_default(self, issuer, consumer, make_user, session):
        inviter = make_user("owner@example.com")
        token = _invite(issuer, inviter).token
        make_user("b@example.com")

        with pytest.raises(ConflictError):
            consumer.accept_invitation(token, "Bea", "secret12")
        assert len(_rows(session, TokenKind.INVITATION)) == 1

    def test_conflict_deletes_token_when_configured(self, issuer, session, clock, make_user):
        inviter = make_user("owner@example.com")
        token = _invite(issuer, inviter).token
        make_user("b@example.com")

        cfg = Settings(_env_file=None, bcrypt_rounds=4, invite_conflict_policy="delete")
        consumer = TokenConsumer(session, cfg=cfg, clock=clock)

        with pytest.raises(ConflictError):
            consumer.accept_invitation(token, "Bea", "secret12")
        assert _rows(session, TokenKind.INVITATION) == []

    def test_accept_adds_income_row_to_active_overview(self, issuer, consumer, make_user, session):
        inviter = make_user("owner@example.com")
        overview = MonthlyOverview(family_id=inviter.family_id, name="Current", is_active=True)
        session.add(overview)
        session.commit()
        overview_id = overview.id

        user = consumer.accept_invitation(_invite(issuer, inviter).token, "Bea", "secret12")

        incomes = session.exec(select(UserIncome).where(UserIncome.user_id == user.id)).all()
        assert [(i.overview_id, i.monthly_salary) for i in incomes] == [(overview_id, 0.0)]
        assert incomes[0].notes == "Invited family member"

    def test_missing_name_rejected(self, consumer):
        with pytest.raises(ValidationError):
            consumer.accept_invitation("tok", "  ", "secret12")


class TestConcurrentConsume:
    THREADS = 8

    @staticmethod
    def _prepare(kind, issuer, make_user):
        if kind == TokenKind.VERIFICATION:
            make_user("a@example.com", verified=False)
            return issuer.issue(kind, "a@example.com").token
        if kind == TokenKind.PASSWORD_RESET:
            make_user("a@example.com", password="oldpass1")
            return issuer.issue(kind, "a@example.com").token
        inviter = make_user("owner@example.com")
        return _invite(issuer, inviter, email="a@example.com").token

    @staticmethod
    def _consume(kind, consumer, token):
        if kind == TokenKind.VERIFICATION:
            return consumer.verify_email(token)
        if kind == TokenKind.PASSWORD_RESET:
            return consumer.reset_password(token, "winner1")
        return consumer.accept_invitation(token, "Bea", "secret12")

    @pytest.mark.parametrize(
        "kind",
        [TokenKind.VERIFICATION, TokenKind.PASSWORD_RESET, TokenKind.INVITATION],
    )
    def test_exactly_one_of_many_threads_wins(self, kind, engine, issuer, make_user, cfg, clock):
        token = self._prepare(kind, issuer, make_user)

        barrier = threading.Barrier(self.THREADS)
        lock = threading.Lock()
        outcomes = []

        def worker():
            with Session(engine) as s:
                consumer = TokenConsumer(s, cfg=cfg, clock=clock)
                barrier.wait()
                try:
                    self._consume(kind, consumer, token)
                    outcome = "ok"
                except Exception as exc:  # collected for the assertion below
                    outcome = exc
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(self.THREADS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(outcomes) == self.THREADS
        assert outcomes.count("ok") == 1
        losers = [o for o in outcomes if o != "ok"]
        assert all(isinstance(o, InvalidTokenError) for o in losers), losers

        with Session(engine) as check:
            assert check.exec(select(EmailToken)).all() == []
            users = check.exec(select(User).where(User.email == "a@example.com")).all()
            assert len(users) == 1
            if kind == TokenKind.PASSWORD_RESET:
                assert verify_password("winner1", users[0].password_hash)
            else:
                assert users[0].is_verified is True

    def test_claim_after_other_commit_is_invalid(self, engine, issuer, make_user, cfg, clock):
        make_user("a@example.com", password="oldpass1")
        token = issuer.issue(TokenKind.PASSWORD_RESET, "a@example.com").token

        with Session(engine) as s_a, Session(engine) as s_b:
            first = TokenConsumer(s_a, cfg=cfg, clock=clock)
            second = TokenConsumer(s_b, cfg=cfg, clock=clock)

            # both requests see the token as present
            seen_by_second = second._lookup(TokenKind.PASSWORD_RESET, token)
            first._lookup(TokenKind.PASSWORD_RESET, token)

            first.reset_password(token, "winner1")

            with pytest.raises(InvalidTokenError):
                second._claim(seen_by_second.id, TokenKind.PASSWORD_RESET)

        with Session(engine) as check:
            user = check.exec(select(User).where(User.email == "a@example.com")).one()
            assert verify_password("winner1", user.password_hash)
            assert check.exec(select(EmailToken)).all() == []

    def test_hash_token_is_stable(self):
        assert hash_token("abc") == hash_token("abc")
        assert hash_token("abc") != hash_token("abd")
