"""Tests for e-mail building and winner notification dispatch."""

import smtplib

import pytest

import db
import game_logic
import notifications


class RecordingMailer:
    sender = "pool@example.com"

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, msg):
        if msg["To"] in self.fail_for:
            raise smtplib.SMTPRecipientsRefused({msg["To"]: (550, b"no such user")})
        self.sent.append(msg)


def _plain(msg):
    return msg.get_body(preferencelist=("plain",)).get_content()


def _html(msg):
    return msg.get_body(preferencelist=("html",)).get_content()


@pytest.fixture
def board(conn, make_user):
    """Identity digits, a Q2 score of 10-3 and three claimed squares."""
    users = {
        "alice": make_user("alice", display_name="Alice", email="alice@example.com"),
        "bob": make_user("bob", display_name="Bob"),
        "carol": make_user("carol", display_name="Carol <3", email="carol@example.com"),
    }
    db.set_setting(conn, "row_digits_json", game_logic.digits_to_json(range(10)))
    db.set_setting(conn, "col_digits_json", game_logic.digits_to_json(range(10)))
    db.set_setting(conn, "team_rows", "Chiefs")
    db.set_setting(conn, "team_columns", "Eagles")
    db.set_score(conn, quarter=2, home_score=10, away_score=3, updated_by_user_id=users["alice"])
    db.set_square_owner(conn, 2, game_logic.square_id(0, 3), users["alice"])
    db.set_square_owner(conn, 2, game_logic.square_id(8, 5), users["alice"])
    db.set_square_owner(conn, 2, game_logic.square_id(1, 3), users["bob"])
    db.set_square_owner(conn, 2, game_logic.square_id(9, 2), users["carol"])
    return users


class TestSmtpSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("SMTP_PORT", "2525")
        monkeypatch.setenv("SMTP_USER", "pool@example.com")
        monkeypatch.setenv("SMTP_PASSWORD", "pw")
        monkeypatch.delenv("SMTP_FROM", raising=False)
        monkeypatch.setenv("SMTP_USE_TLS", "false")
        settings = notifications.SmtpSettings.from_env()
        assert settings.host == "smtp.example.com"
        assert settings.port == 2525
        assert settings.sender == "pool@example.com"
        assert not settings.use_tls
        assert settings.configured

    def test_unconfigured_mailer_raises(self):
        with pytest.raises(RuntimeError):
            notifications.SmtpMailer(notifications.SmtpSettings(host=""))


class TestBuildEmails:
    def test_verification_email(self):
        msg = notifications.build_verification_email("482913", to="a@example.com", sender="pool@example.com")
        assert msg["To"] == "a@example.com"
        assert msg["Subject"] == "Your Super Bowl Squares Verification Code"
        assert "482913" in _plain(msg)
        assert "482913" in _html(msg)
        assert "10 minutes" in _plain(msg)

    def test_winner_email(self):
        summary = game_logic.ParticipantPrizeSummary(
            participant_id=1,
            participant_name="Alice",
            total_prize=2600,
            entries=(
                game_logic.PrizeEntry(row=0, col=3, label="Winner", prize=2400),
                game_logic.PrizeEntry(row=8, col=5, label="Bonus", prize=200),
            ),
        )
        msg = notifications.build_winner_email(
            summary,
            score=game_logic.ScoreEvent(quarter=4, home_score=10, away_score=3),
            home_team="Chiefs",
            away_team="Eagles",
            to="alice@example.com",
            sender="pool@example.com",
        )
        assert msg["Subject"] == "Congratulations! You won $2600 in 4th Quarter/Final!"
        text = _plain(msg)
        assert "Winner (row 0, column 3): $2400" in text
        assert "Bonus (row 8, column 5): $200" in text
        assert "winning numbers 0 - 3" in text
        assert "Congratulations, Alice!" in _html(msg)

    def test_winner_email_without_name(self):
        summary = game_logic.ParticipantPrizeSummary(
            participant_id=1, participant_name=None, total_prize=100, entries=()
        )
        msg = notifications.build_winner_email(
            summary,
            score=game_logic.ScoreEvent(quarter=1, home_score=0, away_score=0),
            home_team="Home",
            away_team="Away",
            to="x@example.com",
            sender="pool@example.com",
        )
        assert "Congratulations, there!" in _html(msg)


class TestNotifyQuarterWinners:
    def test_sends_one_email_per_winner(self, conn, board):
        mailer = RecordingMailer()
        report = notifications.notify_quarter_winners(conn, 2, mailer, actor_user_id=board["alice"])

        assert report.success
        assert report.message == "Winner notifications sent for Q2"
        assert report.total_winners == 3
        assert report.emails_sent == 2
        assert report.skipped == [board["bob"]]
        assert report.failed == []

        by_recipient = {m["To"]: m for m in mailer.sent}
        assert by_recipient["alice@example.com"]["Subject"] == "Congratulations! You won $2600 in 2nd Quarter!"
        assert by_recipient["carol@example.com"]["Subject"] == "Congratulations! You won $100 in 2nd Quarter!"
        assert "Carol &lt;3" in _html(by_recipient["carol@example.com"])
        assert "Chiefs" in _html(by_recipient["alice@example.com"])

        actions = [r["action"] for r in db.recent_audit(conn)]
        assert "notify_winners" in actions

    def test_send_failure_does_not_stop_others(self, conn, board):
        mailer = RecordingMailer(fail_for={"alice@example.com"})
        report = notifications.notify_quarter_winners(conn, 2, mailer)
        assert report.success
        assert report.emails_sent == 1
        assert report.failed == [board["alice"]]
        assert [m["To"] for m in mailer.sent] == ["carol@example.com"]

    def test_no_digits(self, conn, make_user):
        report = notifications.notify_quarter_winners(conn, 1, RecordingMailer())
        assert report.success
        assert report.message == "No board numbers set yet"
        assert report.emails_sent == 0

    def test_no_claimed_winners(self, conn, board):
        mailer = RecordingMailer()
        report = notifications.notify_quarter_winners(conn, 3, mailer)
        assert report.success
        assert report.message == "No winners to notify"
        assert mailer.sent == []

    def test_invalid_board_config(self, conn, board, monkeypatch):
        monkeypatch.setattr(db, "get_board_digits", lambda _conn: ([1] * 10, list(range(10))))
        report = notifications.notify_quarter_winners(conn, 2, RecordingMailer())
        assert not report.success
        assert report.message == "Invalid board numbers configuration"


class TestSendVerificationCode:
    def test_stores_and_sends_code(self, conn, make_user):
        uid = make_user("a")
        mailer = RecordingMailer()
        notifications.send_verification_code(conn, user_id=uid, email="A@example.com", mailer=mailer)

        record = db.get_verification_code(conn, uid)
        assert record["email"] == "a@example.com"
        assert record["attempts"] == 0
        assert len(mailer.sent) == 1
        assert record["code"] in _plain(mailer.sent[0])

        db.verify_email_code(conn, uid, record["code"])
        assert db.get_user(conn, uid).email_verified

    def test_requires_email(self, conn, make_user):
        uid = make_user("a")
        with pytest.raises(ValueError):
            notifications.send_verification_code(conn, user_id=uid, email="", mailer=RecordingMailer())
