from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from app.roster.audit import record_event
from app.roster.db import db_session
from app.roster.mailer import send_mail
from app.roster.models import Person
from app.roster.modules.people.service import issue_password_token, person_for_password_token
from app.roster.utils import safe_return_path, utcnow

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_PASSWORD_MIN_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    person_id = session.get("person_id")
    if not person_id:
        g.current_user = None
        return

    try:
        s = db_session()
        person = s.get(Person, int(person_id))
        if not person or not person.is_active:
            session.pop("person_id", None)
            g.current_user = None
            return
        g.current_user = person
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("person_id", None)
        g.current_user = None


def _landing_url(person: Person) -> str:
    if person.primary_group_id:
        return url_for("people.person_show", group_id=person.primary_group_id, person_id=person.id)
    return url_for("routes.index")


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    try:
        s = db_session()
        person = s.query(Person).filter(func.lower(Person.email) == email).one_or_none() if email else None
        if not person or not person.is_active or not person.password_hash or not check_password_hash(person.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="Person",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            flash("Invalid credentials.", "danger")
            return redirect(url_for("auth.login_get"))

        now = utcnow()
        person.last_sign_in_at = person.current_sign_in_at
        person.current_sign_in_at = now
        session["person_id"] = person.id
        _login_attempts[ip].clear()
        record_event(s, actor=person, action="auth.login", entity_type="Person", entity_id=str(person.id))
        s.commit()
        return redirect(safe_return_path(nxt) or _landing_url(person))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/logout")
def logout():
    s = db_session()
    person = getattr(g, "current_user", None)
    if person:
        record_event(s, actor=person, action="auth.logout", entity_type="Person", entity_id=str(person.id))
        s.commit()
    session.pop("person_id", None)
    return redirect(url_for("routes.index"))


# ---------- Password ----------
@bp.get("/password/new")
def password_new():
    return render_template("auth/password_new.html")


@bp.post("/password/new")
def password_create():
    s = db_session()
    email = (request.form.get("email") or "").strip().lower()
    person = s.query(Person).filter(func.lower(Person.email) == email).one_or_none() if email else None
    if person and person.is_active:
        token = issue_password_token(person)
        record_event(s, actor=None, action="auth.password_reset_requested", entity_type="Person", entity_id=str(person.id))
        s.commit()
        send_mail(
            person.email,
            "Set your password",
            render_template(
                "mail/password_instructions.txt",
                person=person,
                group=person.primary_group,
                link=url_for("auth.password_edit", token=token, _external=True),
            ),
        )
    # Same answer whether the address is known or not.
    flash("If the email is registered, you will receive instructions to set your password.", "info")
    return redirect(url_for("auth.login_get"))


def _token_person():
    return person_for_password_token(
        db_session(),
        request.values.get("token"),
        valid_hours=int(current_app.config["PASSWORD_TOKEN_HOURS"]),
    )


@bp.get("/password/edit")
def password_edit():
    person = _token_person()
    if not person:
        flash("The link is invalid or has expired. Please request a new one.", "danger")
        return redirect(url_for("auth.password_new"))
    return render_template("auth/password_edit.html", token=request.args.get("token"), errors=[])


@bp.post("/password/edit")
def password_update():
    s = db_session()
    person = _token_person()
    if not person:
        flash("The link is invalid or has expired. Please request a new one.", "danger")
        return redirect(url_for("auth.password_new"))

    password = request.form.get("password") or ""
    confirmation = request.form.get("password_confirmation") or ""
    errors = []
    if len(password) < _PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {_PASSWORD_MIN_LENGTH} characters.")
    if password != confirmation:
        errors.append("Password confirmation does not match.")
    if errors:
        return render_template("auth/password_edit.html", token=request.form.get("token"), errors=errors), 422

    person.password_hash = generate_password_hash(password)
    person.reset_password_token = None
    person.reset_password_sent_at = None
    person.updated_at = utcnow()
    record_event(s, actor=person, action="auth.password_set", entity_type="Person", entity_id=str(person.id))
    s.commit()
    flash("Your password has been set. You can sign in now.", "success")
    return redirect(url_for("auth.login_get"))
