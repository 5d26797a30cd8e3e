"""E-mail delivery for verification codes and quarter winner notifications.

SMTP is configured through the environment (see ``SmtpSettings.from_env``). The winner
computation itself lives in ``game_logic``; this module only loads its inputs, formats the
results, and sends them.
"""

from __future__ import annotations

import html
import logging
import os
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Iterable, Mapping, Protocol

import db
import game_logic
import security

logger = logging.getLogger(__name__)

APP_NAME = "Super Bowl Squares"

QUARTER_NAMES: dict[int, str] = {
    1: "1st Quarter",
    2: "2nd Quarter",
    3: "3rd Quarter",
    4: "4th Quarter/Final",
}

_HEADER_HTML = """
<div style="background: linear-gradient(135deg, #1a472a 0%, #228B22 100%); padding: 20px; text-align: center;">
  <h1 style="color: #FFD700; margin: 0;">Super Bowl Squares</h1>
  {subtitle}
</div>
"""

_WINNER_SUBTITLE_HTML = '<p style="color: #fff; margin: 10px 0 0 0;">Winner Notification</p>'

_FOOTER_HTML = """
<div style="background: #1a472a; padding: 15px; text-align: center;">
  <p style="color: #fff; margin: 0; font-size: 12px;">{text}</p>
</div>
"""


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int = 587
    user: str = ""
    password: str = ""
    sender: str = ""
    use_tls: bool = True

    @classmethod
    def from_env(cls) -> "SmtpSettings":
        user = os.getenv("SMTP_USER", "")
        return cls(
            host=os.getenv("SMTP_HOST", ""),
            port=int(os.getenv("SMTP_PORT", "587")),
            user=user,
            password=os.getenv("SMTP_PASSWORD", ""),
            sender=os.getenv("SMTP_FROM", "") or user,
            use_tls=os.getenv("SMTP_USE_TLS", "true").strip().lower() in ("1", "true", "yes"),
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender)


class Mailer(Protocol):
    sender: str

    def send(self, msg: EmailMessage) -> None: ...


class SmtpMailer:
    def __init__(self, settings: SmtpSettings, *, timeout: float = 30.0) -> None:
        if not settings.configured:
            raise RuntimeError("SMTP is not configured; set SMTP_HOST and SMTP_FROM (or SMTP_USER).")
        self.settings = settings
        self.sender = settings.sender
        self.timeout = timeout

    def send(self, msg: EmailMessage) -> None:
        s = self.settings
        with smtplib.SMTP(s.host, s.port, timeout=self.timeout) as server:
            if s.use_tls:
                server.starttls()
            if s.user and s.password:
                server.login(s.user, s.password)
            server.send_message(msg)


def mailer_from_env() -> SmtpMailer:
    return SmtpMailer(SmtpSettings.from_env())


def build_message(*, sender: str, to: str, subject: str, text: str, html_body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f'"{APP_NAME}" <{sender}>'
    msg["To"] = to
    msg.set_content(text)
    msg.add_alternative(html_body, subtype="html")
    return msg


def build_verification_email(code: str, *, to: str, sender: str) -> EmailMessage:
    minutes = security.VERIFICATION_CODE_TTL_SECONDS // 60
    header = _HEADER_HTML.format(subtitle="")
    footer = _FOOTER_HTML.format(text="Super Bowl Squares - Good luck!")
    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  {header}
  <div style="padding: 30px; background: #f9f9f9;">
    <h2 style="color: #1a472a;">Your Verification Code</h2>
    <p style="font-size: 16px; color: #333;">Enter this code to verify your e-mail address:</p>
    <div style="background: #1a472a; color: #FFD700; font-size: 32px; font-weight: bold; letter-spacing: 8px; padding: 20px; text-align: center; border-radius: 10px; margin: 20px 0;">
      {html.escape(code)}
    </div>
    <p style="font-size: 14px; color: #666;">This code expires in {minutes} minutes.</p>
    <p style="font-size: 14px; color: #666;">If you didn't request this code, please ignore this email.</p>
  </div>
  {footer}
</div>
"""
    text = f"Your {APP_NAME} verification code is {code}. It expires in {minutes} minutes."
    return build_message(
        sender=sender,
        to=to,
        subject=f"Your {APP_NAME} Verification Code",
        text=text,
        html_body=body,
    )


def build_winner_email(
    summary: game_logic.ParticipantPrizeSummary,
    *,
    score: game_logic.ScoreEvent,
    home_team: str,
    away_team: str,
    to: str,
    sender: str,
) -> EmailMessage:
    quarter_name = QUARTER_NAMES[score.quarter]
    name = summary.participant_name or "there"
    home_digit = score.home_score % 10
    away_digit = score.away_score % 10
    header = _HEADER_HTML.format(subtitle=_WINNER_SUBTITLE_HTML)
    footer = _FOOTER_HTML.format(text="Super Bowl Squares - Congratulations on your win!")

    items = "".join(
        f"<li>{html.escape(e.label)} (row {e.row}, column {e.col}): ${e.prize}</li>" for e in summary.entries
    )
    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  {header}
  <div style="padding: 30px; background: #f9f9f9;">
    <h2 style="color: #1a472a; text-align: center;">Congratulations, {html.escape(name)}!</h2>
    <div style="background: #FFD700; color: #1a472a; font-size: 28px; font-weight: bold; padding: 20px; text-align: center; border-radius: 10px; margin: 20px 0;">
      You won ${summary.total_prize}!
    </div>
    <div style="background: #fff; padding: 20px; border-radius: 10px; margin: 20px 0;">
      <h3 style="color: #1a472a; margin-top: 0;">{quarter_name} Results</h3>
      <p style="font-size: 18px; margin: 10px 0;">
        <strong>{html.escape(home_team)}:</strong> {score.home_score} &nbsp;&nbsp;|&nbsp;&nbsp;
        <strong>{html.escape(away_team)}:</strong> {score.away_score}
      </p>
      <p style="font-size: 14px; color: #666;">Winning numbers: {home_digit} - {away_digit}</p>
      <hr style="border: none; border-top: 1px solid #ddd; margin: 15px 0;">
      <p style="font-size: 16px; margin: 10px 0;"><strong>Your Winning Squares:</strong></p>
      <ul style="font-size: 14px; color: #333;">{items}</ul>
    </div>
    <p style="font-size: 14px; color: #666; text-align: center;">
      Contact the game administrator to collect your winnings.
    </p>
  </div>
  {footer}
</div>
"""
    lines = [
        f"Congratulations, {name}! You won ${summary.total_prize} in the {quarter_name}.",
        f"{home_team} {score.home_score} - {away_team} {score.away_score} (winning numbers {home_digit} - {away_digit})",
        "",
    ]
    lines += [f"- {e.label} (row {e.row}, column {e.col}): ${e.prize}" for e in summary.entries]
    return build_message(
        sender=sender,
        to=to,
        subject=f"Congratulations! You won ${summary.total_prize} in {quarter_name}!",
        text="\n".join(lines),
        html_body=body,
    )


@dataclass
class DispatchReport:
    success: bool
    message: str
    emails_sent: int = 0
    total_winners: int = 0
    skipped: list[Any] = field(default_factory=list)
    failed: list[Any] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "emails_sent": self.emails_sent,
            "total_winners": self.total_winners,
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


def dispatch_winner_notifications(
    summaries: Iterable[game_logic.ParticipantPrizeSummary],
    *,
    emails: Mapping[Any, str],
    score: game_logic.ScoreEvent,
    home_team: str,
    away_team: str,
    mailer: Mailer,
) -> DispatchReport:
    """Send one consolidated message per winning participant.

    Participants with no address are skipped; a send failure is logged and recorded but does
    not stop the remaining messages.
    """
    summaries = list(summaries)
    report = DispatchReport(
        success=True,
        message=f"Winner notifications sent for Q{score.quarter}",
        total_winners=len(summaries),
    )
    for summary in summaries:
        to = emails.get(summary.participant_id)
        if not to:
            logger.info("No email found for user %s", summary.participant_id)
            report.skipped.append(summary.participant_id)
            continue
        msg = build_winner_email(
            summary,
            score=score,
            home_team=home_team,
            away_team=away_team,
            to=to,
            sender=mailer.sender,
        )
        try:
            mailer.send(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send winner email to %s: %s", to, e)
            report.failed.append(summary.participant_id)
            continue
        report.emails_sent += 1
        logger.info("Winner notification sent to %s for $%s", to, summary.total_prize)
    return report


def notify_quarter_winners(conn: Any, quarter: int, mailer: Mailer, *, actor_user_id: int | None = None) -> DispatchReport:
    row_digits, col_digits = db.get_board_digits(conn)
    if not (row_digits and col_digits):
        logger.info("No board numbers set - skipping winner notifications")
        return DispatchReport(success=True, message="No board numbers set yet")

    score = db.get_score_event(conn, quarter)
    try:
        cells = game_logic.resolve(score, row_digits, col_digits)
    except game_logic.InvalidBoardConfig as e:
        logger.warning("Could not resolve winners for Q%s: %s", quarter, e)
        return DispatchReport(success=False, message="Invalid board numbers configuration")

    summaries = game_logic.aggregate(cells, db.claims_for_quarter(conn, quarter))
    if not summaries:
        logger.info("No winners found for quarter %s", quarter)
        return DispatchReport(success=True, message="No winners to notify")

    report = dispatch_winner_notifications(
        summaries,
        emails=db.user_emails(conn, [s.participant_id for s in summaries]),
        score=score,
        home_team=db.get_setting(conn, "team_rows") or "Home",
        away_team=db.get_setting(conn, "team_columns") or "Away",
        mailer=mailer,
    )
    db.log_action(conn, actor_user_id, "notify_winners", {"quarter": quarter, **report.as_dict()})
    return report


def send_verification_code(conn: Any, *, user_id: int, email: str, mailer: Mailer) -> None:
    if not email or not user_id:
        raise ValueError("Email and user id are required")
    code = security.generate_verification_code()
    db.store_verification_code(
        conn,
        user_id=user_id,
        email=email,
        code=code,
        expires_at_ts=security.verification_expiry(),
    )
    mailer.send(build_verification_email(code, to=email, sender=mailer.sender))
    logger.info("Verification code sent to %s", email)
