"""Tests for the account page's e-mail step."""

import app
import db


class OutboxMailer:
    sender = "pool@example.com"

    def __init__(self):
        self.sent = []

    def send(self, msg):
        self.sent.append(msg)


class TestSaveEmailAndSendCode:
    def test_new_address_is_visible_on_returned_user(self, conn, make_user):
        uid = make_user("alice")
        mailer = OutboxMailer()

        user = app.save_email_and_send_code(conn, db.get_user(conn, uid), " Alice@Example.com", mailer)

        assert user.email == "alice@example.com"
        assert not user.email_verified
        assert [m["To"] for m in mailer.sent] == ["alice@example.com"]
        assert db.get_verification_code(conn, uid) is not None

    def test_same_address_keeps_verified_flag_until_resend(self, conn, make_user):
        uid = make_user("bob", email="bob@example.com")
        db.mark_email_verified(conn, uid)
        mailer = OutboxMailer()

        user = app.save_email_and_send_code(conn, db.get_user(conn, uid), "bob@example.com", mailer)

        assert user.email == "bob@example.com"
        assert user.email_verified
        assert len(mailer.sent) == 1
