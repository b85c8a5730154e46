import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    self_registration_enabled: bool
    root_email: str
    role_minimum_days_to_archive: int
    people_cleanup_roles_months: int
    people_cleanup_sign_in_months: int
    password_token_hours: int

    mail_backend: str
    mail_from: str
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_starttls: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    env = _getenv("ENV", "development")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///roster.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        self_registration_enabled=_getenv_bool("SELF_REGISTRATION_ENABLED", True),
        root_email=_getenv("ROOT_EMAIL", "root@example.org").lower(),
        role_minimum_days_to_archive=_getenv_int("ROLE_MINIMUM_DAYS_TO_ARCHIVE", 7),
        people_cleanup_roles_months=_getenv_int("PEOPLE_CLEANUP_ROLES_MONTHS", 12),
        people_cleanup_sign_in_months=_getenv_int("PEOPLE_CLEANUP_SIGN_IN_MONTHS", 18),
        password_token_hours=_getenv_int("PASSWORD_TOKEN_HOURS", 6),
        # tests never talk to a mail server
        mail_backend=_getenv("MAIL_BACKEND", "memory" if env == "test" else "log"),
        mail_from=_getenv("MAIL_FROM", "noreply@example.org"),
        smtp_host=_getenv("SMTP_HOST", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_starttls=_getenv_bool("SMTP_STARTTLS", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "TESTING": s.env == "test",
        "CSRF_ENABLED": s.env != "test",
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # membership rules
        "SELF_REGISTRATION_ENABLED": s.self_registration_enabled,
        "ROOT_EMAIL": s.root_email,
        "ROLE_MINIMUM_DAYS_TO_ARCHIVE": s.role_minimum_days_to_archive,
        "PEOPLE_CLEANUP_ROLES_MONTHS": s.people_cleanup_roles_months,
        "PEOPLE_CLEANUP_SIGN_IN_MONTHS": s.people_cleanup_sign_in_months,
        "PASSWORD_TOKEN_HOURS": s.password_token_hours,
        # outbound mail
        "MAIL_BACKEND": s.mail_backend,
        "MAIL_FROM": s.mail_from,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_STARTTLS": s.smtp_starttls,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # privacy policy uploads (10MB)
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
