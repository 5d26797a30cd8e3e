from __future__ import annotations

import json
import logging
import os
import random
import sys
from datetime import datetime
from pathlib import Path

import pandas as pd
import streamlit as st
from dotenv import load_dotenv

import db
import game_logic
import notifications
import security

logger = logging.getLogger("superbowl_squares")

_GLOBAL_CSS = """
<style>
div[data-testid="stElementContainer"] {
  border-radius: 0.85rem;
}
</style>
"""

_GRID_CSS = """
<style>
__SCOPE__ { width: 100%; --sb-cell: clamp(2.25rem, 4.8vw, 3.1rem); }
__SCOPE__ [data-testid="stHorizontalBlock"] { gap: 0.18rem !important; }
__SCOPE__ [data-testid="column"] { padding: 0 !important; min-width: var(--sb-cell) !important; }
__SCOPE__ div[data-testid="stButton"] { margin: 0 !important; }

__SCOPE__ .team-top {
  font-weight: 900;
  text-transform: uppercase;
  font-size: clamp(1.4rem, 4.5vw, 2.4rem);
  text-align: center;
  margin: 0.2rem 0 0.25rem 0;
}
__SCOPE__ .team-side {
  font-weight: 900;
  text-transform: uppercase;
  font-size: clamp(1.0rem, 4vw, 1.5rem);
  text-align: center;
  margin: 0.1rem 0 0.45rem 0;
}
__SCOPE__ .digit {
  height: var(--sb-cell);
  display: flex;
  align-items: center;
  justify-content: center;
  border-radius: 0.6rem;
  font-weight: 900;
  color: #FFFFFF;
}
__SCOPE__ .digit-top { background: #E11D48; border: 2px solid #F59E0B; }
__SCOPE__ .digit-left { background: #0F4C5C; }
__SCOPE__ .corner { height: var(--sb-cell); }
__SCOPE__ button {
  width: 100%;
  height: var(--sb-cell);
  padding: 0 !important;
  border-radius: 0.6rem !important;
  font-weight: 900 !important;
}
/* Winning squares for the selected quarter */
__SCOPE__ button[data-testid="baseButton-primary"] {
  background: #FFEDD5 !important;
  border-color: #FB923C !important;
  color: #7C2D12 !important;
}
</style>
"""

_SECRET_KEYS = (
    "DATABASE_URL",
    "NEON_DATABASE_URL",
    "POSTGRES_URL",
    "POSTGRES_URL_NON_POOLING",
    "SUPERBOWL_ADMIN_USERNAME",
    "SUPERBOWL_ADMIN_PASSWORD",
    "SUPERBOWL_ADMIN_DISPLAY_NAME",
    "SUPERBOWL_ADMIN_EMAIL",
    "SUPERBOWL_SQUARES_DB_PATH",
    "SUPERBOWL_LOG_LEVEL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASSWORD",
    "SMTP_FROM",
    "SMTP_USE_TLS",
)


def setup_logging(level: str | None = None) -> None:
    level_name = (level or os.getenv("SUPERBOWL_LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    # Streamlit re-runs main() on every interaction.
    root.handlers = [h for h in root.handlers if h.get_name() != "superbowl_squares"]
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name("superbowl_squares")
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))


def _ts_to_str(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _cell_label(name: str) -> str:
    first = (name or "").strip().split(" ")[0] if name else ""
    if not first:
        return "☐"
    return first[:6]


def require_login() -> db.User:
    user_id = st.session_state.get("user_id")
    if not user_id:
        st.info("Sign in to claim squares and see your boxes.")
        st.stop()
    with db.db() as conn:
        user = db.get_user(conn, int(user_id))
    if not user:
        st.session_state.pop("user_id", None)
        st.warning("Session expired. Please sign in again.")
        st.stop()
    return user


def require_admin(user: db.User) -> None:
    if not user.is_admin:
        st.error("Admin-only area.")
        st.stop()


def load_state(quarter: int):
    with db.db() as conn:
        db.init_db(conn)
        settings = {
            "team_rows": db.get_setting(conn, "team_rows"),
            "team_columns": db.get_setting(conn, "team_columns"),
            "board_locked": db.get_setting(conn, "board_locked") == "1",
        }
        squares = db.list_squares(conn, quarter)
        row_digits, col_digits = db.get_board_digits(conn)
    return settings, squares, row_digits, col_digits


def quarter_results(conn, quarter: int, row_digits: list[int], col_digits: list[int]):
    """Winning cells and per-participant totals for one quarter's current score."""
    score = db.get_score_event(conn, quarter)
    cells = game_logic.resolve(score, row_digits, col_digits)
    claims = db.claims_for_quarter(conn, quarter)
    return score, cells, claims, game_logic.aggregate(cells, claims)


def winners_df(cells: list[game_logic.WinningCell], claims: dict) -> pd.DataFrame:
    rows = []
    for cell in cells:
        claim = claims.get((cell.row, cell.col))
        rows.append(
            {
                "Square": f"R{cell.row} C{cell.col} (#{cell.square_id})",
                "Type": cell.label,
                "Prize": f"${cell.prize}",
                "Owner": (claim.participant_name if claim else None) or "(unclaimed)",
            }
        )
    return pd.DataFrame(rows)


def summaries_df(summaries: list[game_logic.ParticipantPrizeSummary]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Participant": s.participant_name or f"user {s.participant_id}",
                "Squares": ", ".join(f"R{e.row} C{e.col} ({e.label})" for e in s.entries),
                "Total": f"${s.total_prize}",
            }
            for s in summaries
        ]
    )


def render_board_grid(
    *,
    squares: list[dict],
    row_digits: list[int] | None,
    col_digits: list[int] | None,
    team_rows: str,
    team_columns: str,
    grid_key_prefix: str,
    selected_ids: set[int],
    on_toggle_select=None,
    highlight_user_id: int | None = None,
    winning_ids: set[int] | None = None,
) -> None:
    scope_id = f"sb-grid-{grid_key_prefix}"
    scope_selector = f"div[data-testid='stVerticalBlock']:has(#{scope_id})"
    container = st.container()

    square_map = {int(s["id"]): s for s in squares}
    row_labels = row_digits if row_digits else ["?"] * game_logic.GRID_SIZE
    col_labels = col_digits if col_digits else ["?"] * game_logic.GRID_SIZE
    winning_ids = winning_ids or set()

    container.markdown(f"<div id='{scope_id}'></div>", unsafe_allow_html=True)
    container.markdown(_GRID_CSS.replace("__SCOPE__", scope_selector), unsafe_allow_html=True)
    container.markdown(f"<div class='team-top'>{team_columns}</div>", unsafe_allow_html=True)
    container.markdown(f"<div class='team-side'>↓ {team_rows}</div>", unsafe_allow_html=True)

    header = container.columns([0.72] + [1] * game_logic.GRID_SIZE)
    header[0].markdown("<div class='corner'></div>", unsafe_allow_html=True)
    for c in range(game_logic.GRID_SIZE):
        header[c + 1].markdown(f"<div class='digit digit-top'>{col_labels[c]}</div>", unsafe_allow_html=True)

    for r in range(game_logic.GRID_SIZE):
        row_cols = container.columns([0.72] + [1] * game_logic.GRID_SIZE)
        row_cols[0].markdown(f"<div class='digit digit-left'>{row_labels[r]}</div>", unsafe_allow_html=True)
        for c in range(game_logic.GRID_SIZE):
            sq_id = game_logic.square_id(r, c)
            sq = square_map[sq_id]
            owner_id = sq.get("owner_user_id")
            owner_name = sq.get("owner_display_name") or ""
            is_mine = bool(owner_id) and highlight_user_id is not None and int(owner_id) == int(highlight_user_id)
            can_toggle = bool(on_toggle_select) and (not owner_id or is_mine)

            if owner_id:
                label = _cell_label(owner_name)
                help_txt = "Yours" if is_mine else owner_name
            else:
                label = "✓" if sq_id in selected_ids else "☐"
                help_txt = "Open"
            if is_mine and sq_id in selected_ids:
                label, help_txt = "✗", "Will release"

            clicked = row_cols[c + 1].button(
                label,
                key=f"{grid_key_prefix}_{sq_id}",
                disabled=not can_toggle,
                type="primary" if sq_id in winning_ids else "secondary",
                help=help_txt,
            )
            if clicked and can_toggle:
                on_toggle_select(sq_id)


def page_auth():
    st.header("Welcome")
    st.write(
        "This is a simple Super Bowl squares board for friends and family. "
        "Make an account, claim your squares for each quarter, and check back during the game for winners."
    )

    with db.db() as conn:
        db.init_db(conn)
        has_users = db.any_users_exist(conn)

    tab1, tab2 = st.tabs(["Sign in", "Create account" if has_users else "Create admin account"])

    with tab1:
        with st.form("login"):
            username = st.text_input("Username", placeholder="username", key="login_username")
            password = st.text_input("Password", type="password", key="login_password")
            submitted = st.form_submit_button("Sign in")
        if submitted:
            with db.db() as conn:
                row = db.get_user_by_username(conn, username.strip().lower())
                if not row:
                    st.error("No such user.")
                    st.stop()
                if not security.verify_password(
                    password,
                    salt_b64=str(row["salt_b64"]),
                    password_hash_b64=str(row["password_hash_b64"]),
                ):
                    st.error("Wrong password.")
                    st.stop()
                st.session_state["user_id"] = int(row["id"])
                st.session_state["nav_page"] = "Home"
                db.log_action(conn, int(row["id"]), "login", {})
            st.success("Signed in.")
            st.rerun()

    with tab2:
        st.caption("Pick a username your friends will recognize. Your e-mail is used for winner notifications.")
        with st.form("register"):
            username = st.text_input("Username", placeholder="username", key="register_username")
            display_name = st.text_input("Display name", placeholder="User", key="register_display_name")
            email = st.text_input("E-mail", placeholder="you@example.com", key="register_email")
            password = st.text_input("Password", type="password", key="register_password")
            password2 = st.text_input("Confirm password", type="password", key="register_password2")
            submitted = st.form_submit_button("Create account")
        if submitted:
            if not username.strip():
                st.error("Username required.")
                st.stop()
            if not display_name.strip():
                st.error("Display name required.")
                st.stop()
            if email.strip() and "@" not in email:
                st.error("That does not look like an e-mail address.")
                st.stop()
            if len(password) < 6:
                st.error("Password must be at least 6 characters.")
                st.stop()
            if password != password2:
                st.error("Passwords do not match.")
                st.stop()
            admin_username = (os.getenv("SUPERBOWL_ADMIN_USERNAME") or "").strip().lower()
            admin_password = os.getenv("SUPERBOWL_ADMIN_PASSWORD") or ""
            reserved_admin = admin_username if (admin_username and admin_password) else ""
            if reserved_admin and username.strip().lower() == reserved_admin:
                st.error("That username is reserved for the admin.")
                st.stop()
            with db.db() as conn:
                db.init_db(conn)
                is_admin = (not reserved_admin) and (not db.any_users_exist(conn))
                salt_b64, hash_b64 = security.hash_password(password)
                try:
                    user_id = db.create_user(
                        conn,
                        username=username,
                        display_name=display_name,
                        email=email,
                        salt_b64=salt_b64,
                        password_hash_b64=hash_b64,
                        is_admin=is_admin,
                    )
                except Exception as e:
                    if db.is_username_taken_error(e):
                        st.error("That username is taken.")
                        st.stop()
                    raise
                db.log_action(conn, user_id, "register", {"is_admin": is_admin})
                st.session_state["user_id"] = user_id
                st.session_state["nav_page"] = "Home"
            st.success("Account created.")
            st.rerun()


def page_home(user: db.User):
    quarter = st.radio(
        "Quarter",
        list(game_logic.QUARTERS),
        format_func=lambda q: notifications.QUARTER_NAMES[q],
        horizontal=True,
        key="home_quarter",
    )
    settings, squares, row_digits, col_digits = load_state(quarter)
    select_key = f"home_selected_q{quarter}"

    st.header("Super Bowl Squares")
    st.write(
        "Claim boxes for each quarter. Digits get assigned later, so pick based on vibes, not math. "
        "Adjacent and diagonal neighbours of the winning square win too, and the 2nd and 4th quarters "
        "pay a reverse-score bonus."
    )

    c1, c2 = st.columns(2)
    claimed = sum(1 for s in squares if s.get("owner_user_id"))
    c1.metric("Claimed this quarter", f"{claimed}/100")
    c2.metric("Board locked", "Yes" if settings["board_locked"] else "No")

    flash = st.session_state.pop("home_flash_message", None)
    if flash:
        st.success(str(flash))

    cells: list[game_logic.WinningCell] = []
    claims: dict = {}
    summaries: list[game_logic.ParticipantPrizeSummary] = []
    if row_digits and col_digits:
        try:
            with db.db() as conn:
                _, cells, claims, summaries = quarter_results(conn, quarter, row_digits, col_digits)
        except game_logic.InvalidBoardConfig:
            st.error("Invalid board numbers configuration. Ask the admin to re-assign digits.")

    selected_ids = set(st.session_state.get(select_key, []))
    my_ids = {int(s["id"]) for s in squares if s.get("owner_user_id") == user.id}
    open_ids = {int(s["id"]) for s in squares if not s.get("owner_user_id")}

    def _toggle_select(sq_id: int) -> None:
        sel = set(st.session_state.get(select_key, []))
        sel.symmetric_difference_update({sq_id})
        st.session_state[select_key] = sorted(sel)
        st.rerun()

    can_edit = not settings["board_locked"]
    st.subheader("Board")
    st.caption(
        "Tap open squares to select them, or your own squares to release them."
        if can_edit
        else "Board is locked. Winning squares are highlighted."
    )
    render_board_grid(
        squares=squares,
        row_digits=row_digits,
        col_digits=col_digits,
        team_rows=str(settings["team_rows"] or "Home"),
        team_columns=str(settings["team_columns"] or "Away"),
        grid_key_prefix=f"home_q{quarter}",
        selected_ids=selected_ids,
        on_toggle_select=_toggle_select if can_edit else None,
        highlight_user_id=user.id,
        winning_ids={c.square_id for c in cells},
    )

    if can_edit:
        selected_open = sorted(sq for sq in selected_ids if sq in open_ids)
        selected_mine = sorted(sq for sq in selected_ids if sq in my_ids)
        c1, c2, c3 = st.columns([1.4, 1, 1.2])
        c1.markdown(f"Will claim: `{len(selected_open)}`  \nWill release: `{len(selected_mine)}`")
        if c2.button("Clear selection", disabled=not selected_ids, use_container_width=True):
            st.session_state[select_key] = []
            st.rerun()
        if c3.button(
            "Apply changes",
            type="primary",
            disabled=not (selected_open or selected_mine),
            use_container_width=True,
        ):
            claimed_ids: list[int] = []
            released_ids: list[int] = []
            skipped: list[int] = []
            with db.db() as conn:
                db.init_db(conn)
                for sq_id in selected_open:
                    if db.get_square_owner_user_id(conn, quarter, sq_id) is not None:
                        skipped.append(sq_id)
                        continue
                    db.set_square_owner(conn, quarter, sq_id, user.id)
                    db.log_action(conn, user.id, "claim_square", {"quarter": quarter, "square_id": sq_id})
                    claimed_ids.append(sq_id)
                for sq_id in selected_mine:
                    if db.get_square_owner_user_id(conn, quarter, sq_id) != user.id:
                        skipped.append(sq_id)
                        continue
                    db.set_square_owner(conn, quarter, sq_id, None)
                    db.log_action(conn, user.id, "release_square", {"quarter": quarter, "square_id": sq_id})
                    released_ids.append(sq_id)

            st.session_state[select_key] = []
            msg = []
            if claimed_ids:
                msg.append(f"claimed {len(claimed_ids)}")
            if released_ids:
                msg.append(f"released {len(released_ids)}")
            if skipped:
                msg.append(f"skipped {len(skipped)} (changed by someone else)")
            st.session_state["home_flash_message"] = "Update: " + (", ".join(msg) if msg else "no changes")
            st.rerun()

    st.subheader(f"{notifications.QUARTER_NAMES[quarter]} winners")
    if not (row_digits and col_digits):
        st.info("Digits have not been assigned yet (that is normal).")
    elif cells:
        st.caption(f"Total paid this quarter: ${game_logic.prize_total(cells)}")
        st.dataframe(winners_df(cells, claims), use_container_width=True, hide_index=True)
        mine = next((s for s in summaries if s.participant_id == user.id), None)
        if mine:
            st.success(f"You won ${mine.total_prize} this quarter!")

    with st.expander("Recent activity", expanded=False):
        with db.db() as conn:
            rows = db.recent_audit(conn, limit=15)
        if not rows:
            st.caption("No activity yet.")
        for r in rows:
            actor = r["actor_display_name"] or "Someone"
            details = json.loads(r["details_json"]) if r["details_json"] else {}
            st.write(f"- {_ts_to_str(int(r['created_at_ts']))}: {actor} {r['action']} {details}")


def save_email_and_send_code(conn, user: db.User, email: str, mailer: notifications.Mailer) -> db.User:
    """Store a new address if it changed, mail a fresh code, and return the reloaded user."""
    email = email.strip().lower()
    if email != (user.email or ""):
        db.set_user_email(conn, user.id, email)
    notifications.send_verification_code(conn, user_id=user.id, email=email, mailer=mailer)
    return db.get_user(conn, user.id)


def page_account(user: db.User):
    st.header("Account")
    st.write(f"Signed in as **{user.display_name}** (`{user.username}`).")

    st.subheader("E-mail")
    if user.email:
        status = "verified" if user.email_verified else "not verified"
        st.write(f"{user.email} ({status})")
    else:
        st.info("Add an e-mail address to receive winner notifications.")

    with st.form("email"):
        email = st.text_input("E-mail", value=user.email or "")
        submitted = st.form_submit_button("Save and send verification code")
    if submitted:
        if "@" not in email:
            st.error("That does not look like an e-mail address.")
            st.stop()
        try:
            mailer = notifications.mailer_from_env()
        except RuntimeError as e:
            st.error(str(e))
            st.stop()
        with db.db() as conn:
            try:
                user = save_email_and_send_code(conn, user, email, mailer)
            except OSError:
                logger.exception("Failed to send verification code to %s", email)
                st.error("Failed to send verification code.")
                st.stop()
        st.success("Verification code sent.")

    if user.email and not user.email_verified:
        with st.form("verify"):
            code = st.text_input("Verification code", max_chars=6)
            submitted = st.form_submit_button("Verify")
        if submitted:
            with db.db() as conn:
                try:
                    db.verify_email_code(conn, user.id, code)
                except security.VerificationError as e:
                    failure = str(e)
                else:
                    failure = ""
            if failure:
                st.error(failure)
                st.stop()
            st.success("Email verified successfully.")
            st.rerun()


def page_scores(user: db.User):
    with db.db() as conn:
        db.init_db(conn)
        team_rows = db.get_setting(conn, "team_rows")
        team_columns = db.get_setting(conn, "team_columns")
        row_digits, col_digits = db.get_board_digits(conn)
        scores = [db.get_score(conn, q) for q in game_logic.QUARTERS]

    st.header("Scores")
    st.caption("Admin enters quarter-end scores. Everyone can view.")
    if row_digits and col_digits:
        st.info(f"Row digit = {team_rows} last digit, column digit = {team_columns} last digit.")
    else:
        st.warning("Digits are not assigned yet, so winners cannot be computed.")

    table = [
        {
            "Quarter": notifications.QUARTER_NAMES[int(s["quarter"])],
            team_rows: int(s["home_score"]),
            team_columns: int(s["away_score"]),
            "Updated": _ts_to_str(int(s["updated_at_ts"])),
        }
        for s in scores
    ]
    st.dataframe(pd.DataFrame(table), use_container_width=True, hide_index=True)

    if row_digits and col_digits:
        st.subheader("Payouts (based on current scores)")
        for q in game_logic.QUARTERS:
            try:
                with db.db() as conn:
                    _, _, _, summaries = quarter_results(conn, q, row_digits, col_digits)
            except game_logic.InvalidBoardConfig:
                st.error("Invalid board numbers configuration.")
                break
            st.markdown(f"**{notifications.QUARTER_NAMES[q]}**")
            if summaries:
                st.dataframe(summaries_df(summaries), use_container_width=True, hide_index=True)
            else:
                st.caption("No claimed winning squares.")

    if not user.is_admin:
        return

    st.subheader("Update a quarter")
    with st.form("update_score"):
        quarter = st.selectbox("Quarter", list(game_logic.QUARTERS), index=0)
        home_score = st.number_input(f"{team_rows} score", min_value=0, max_value=199, value=0, step=1)
        away_score = st.number_input(f"{team_columns} score", min_value=0, max_value=199, value=0, step=1)
        notify = st.checkbox("E-mail the winners after saving", value=False)
        submitted = st.form_submit_button("Save score")
    if submitted:
        with db.db() as conn:
            db.init_db(conn)
            db.set_score(
                conn,
                quarter=int(quarter),
                home_score=int(home_score),
                away_score=int(away_score),
                updated_by_user_id=user.id,
            )
            db.log_action(
                conn,
                user.id,
                "update_score",
                {"quarter": int(quarter), "home_score": int(home_score), "away_score": int(away_score)},
            )
        st.success("Saved.")
        if notify:
            _notify_winners(user, int(quarter))
        else:
            st.rerun()

    st.subheader("Winner notifications")
    q = st.selectbox("Quarter to notify", list(game_logic.QUARTERS), key="notify_quarter")
    if st.button("Send winner e-mails"):
        _notify_winners(user, int(q))


def _notify_winners(user: db.User, quarter: int) -> None:
    try:
        mailer = notifications.mailer_from_env()
    except RuntimeError as e:
        st.error(str(e))
        return
    with db.db() as conn:
        report = notifications.notify_quarter_winners(conn, quarter, mailer, actor_user_id=user.id)
    if not report.success:
        st.error(report.message)
        return
    st.success(f"{report.message}: {report.emails_sent} e-mail(s) sent to {report.total_winners} winner(s).")
    if report.skipped:
        st.warning(f"{len(report.skipped)} winner(s) have no e-mail address.")
    if report.failed:
        st.warning(f"{len(report.failed)} e-mail(s) failed to send. Check the logs.")


def _save_digits(user: db.User, action: str, rd: list[int], cd: list[int]) -> None:
    with db.db() as conn:
        db.init_db(conn)
        db.set_setting(conn, "row_digits_json", game_logic.digits_to_json(rd))
        db.set_setting(conn, "col_digits_json", game_logic.digits_to_json(cd))
        db.log_action(conn, user.id, action, {"row_digits": rd, "col_digits": cd})


def _shuffled_digits() -> list[int]:
    digits = list(range(game_logic.GRID_SIZE))
    random.shuffle(digits)
    return digits


def page_admin(user: db.User):
    require_admin(user)
    settings, _, row_digits, col_digits = load_state(1)

    st.header("Admin")
    st.caption("You are the referee. No pressure.")

    st.subheader("Game setup")
    with st.form("setup"):
        team_rows = st.text_input("Home team (rows)", value=settings["team_rows"])
        team_cols = st.text_input("Away team (columns)", value=settings["team_columns"])
        board_locked = st.checkbox("Lock board (prevents claiming/releasing)", value=bool(settings["board_locked"]))
        submitted = st.form_submit_button("Save settings")
    if submitted:
        with db.db() as conn:
            db.init_db(conn)
            db.set_setting(conn, "team_rows", team_rows.strip() or "Home")
            db.set_setting(conn, "team_columns", team_cols.strip() or "Away")
            db.set_setting(conn, "board_locked", "1" if board_locked else "0")
            db.log_action(
                conn,
                user.id,
                "update_settings",
                {"team_rows": team_rows, "team_columns": team_cols, "board_locked": board_locked},
            )
        st.success("Saved.")
        st.rerun()

    st.subheader("Digits assignment")
    if row_digits and col_digits:
        st.write(f"Rows digits: {row_digits}")
        st.write(f"Columns digits: {col_digits}")
    else:
        st.info("Digits not assigned yet.")

    c1, c2, c3 = st.columns(3)
    if c1.button("Randomize rows + columns"):
        _save_digits(user, "assign_digits", _shuffled_digits(), _shuffled_digits())
        st.success("Digits assigned.")
        st.rerun()
    if c2.button("Randomize rows only"):
        _save_digits(user, "assign_digits_rows_only", _shuffled_digits(), col_digits or _shuffled_digits())
        st.success("Rows digits randomized.")
        st.rerun()
    if c3.button("Randomize columns only"):
        _save_digits(user, "assign_digits_cols_only", row_digits or _shuffled_digits(), _shuffled_digits())
        st.success("Columns digits randomized.")
        st.rerun()

    st.caption("Digits map score last-digits (0-9) to the board edges. Randomize once you're ready.")

    if st.button("Clear digits", type="secondary"):
        with db.db() as conn:
            db.init_db(conn)
            db.set_setting(conn, "row_digits_json", "")
            db.set_setting(conn, "col_digits_json", "")
            db.log_action(conn, user.id, "clear_digits", {})
        st.success("Cleared.")
        st.rerun()

    st.subheader("Reset board (keeps users)")
    st.caption("Clears every quarter's squares, the scores and the digits.")
    if st.button("Reset squares + scores", type="secondary"):
        with db.db() as conn:
            db.init_db(conn)
            db.reset_board_keep_users(conn)
            db.log_action(conn, user.id, "reset_board", {})
        st.success("Reset complete.")
        st.rerun()


def main():
    # Local dev convenience: load `.env` next to this file if present.
    load_dotenv(Path(__file__).resolve().parent / ".env")

    st.set_page_config(page_title="Super Bowl Squares", layout="wide")
    st.markdown(_GLOBAL_CSS, unsafe_allow_html=True)

    # Streamlit secrets → env bridge (so `db.py` and `notifications.py` can read them).
    try:
        secrets = st.secrets  # type: ignore[attr-defined]
        for key in _SECRET_KEYS:
            if key in secrets and str(secrets[key]).strip():
                os.environ.setdefault(key, str(secrets[key]))
    except FileNotFoundError:
        pass

    setup_logging()

    with db.db() as conn:
        db.init_db(conn)
        db.ensure_admin_from_env(conn)

    user = None
    if st.session_state.get("user_id"):
        with db.db() as conn:
            user = db.get_user(conn, int(st.session_state["user_id"]))

    if not user:
        page_auth()
        return

    pages = ["Home", "Scores", "Account", "Admin"] if user.is_admin else ["Home", "Scores", "Account"]
    if st.session_state.get("nav_page") not in pages:
        st.session_state["nav_page"] = "Home"

    with st.sidebar:
        st.title("Squares")
        st.write(f"Signed in as: {user.display_name}")
        if st.button("Sign out"):
            st.session_state.pop("user_id", None)
            st.rerun()
        page = st.radio("Go to", options=pages, key="nav_page")

    if page == "Home":
        page_home(user)
    elif page == "Scores":
        page_scores(user)
    elif page == "Account":
        page_account(require_login())
    elif page == "Admin":
        page_admin(require_login())


if __name__ == "__main__":
    main()
