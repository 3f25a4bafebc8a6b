import os
import smtplib
import logging
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Optional

logger = logging.getLogger(__name__)


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class SmtpSettings:
    host: str
    port: int
    user: str
    password: str
    from_email: str
    use_tls: bool
    use_ssl: bool
    use_auth: bool
    timeout: float


def smtp_settings() -> Optional[SmtpSettings]:
    """
    SMTP_HOST unset means there is no mail server: send_email then logs the
    message instead (local/dev), unless EMAIL_REQUIRE_SMTP=true.

    Optional env: SMTP_PORT (587), SMTP_USER, SMTP_PASS, FROM_EMAIL,
    SMTP_USE_TLS, SMTP_USE_SSL, SMTP_USE_AUTH, SMTP_TIMEOUT (10s).
    """
    host = os.getenv("SMTP_HOST")
    if not host:
        return None

    user = os.getenv("SMTP_USER", "")
    return SmtpSettings(
        host=host,
        port=int(os.getenv("SMTP_PORT", "587")),
        user=user,
        password=os.getenv("SMTP_PASS", ""),
        from_email=os.getenv("FROM_EMAIL") or user or "noreply@local",
        use_tls=_get_bool("SMTP_USE_TLS"),
        use_ssl=_get_bool("SMTP_USE_SSL"),
        use_auth=_get_bool("SMTP_USE_AUTH"),
        timeout=float(os.getenv("SMTP_TIMEOUT", "10")),
    )


def send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Returns True when handed to an SMTP server, False in log-only mode."""
    cfg = smtp_settings()
    if cfg is None:
        if _get_bool("EMAIL_REQUIRE_SMTP"):
            raise RuntimeError("SMTP_HOST is not set")
        logger.info("SMTP not configured, email logged only to=%s subject=%s", to_email, subject)
        return False

    msg = MIMEText(html_body, "html", "utf-8")
    msg["Subject"] = subject
    msg["From"] = cfg.from_email
    msg["To"] = to_email

    try:
        smtp_cls = smtplib.SMTP_SSL if cfg.use_ssl else smtplib.SMTP
        with smtp_cls(cfg.host, cfg.port, timeout=cfg.timeout) as s:
            s.ehlo()

            if cfg.use_tls and not cfg.use_ssl:
                s.starttls()
                s.ehlo()

            if cfg.use_auth:
                if not cfg.user or not cfg.password:
                    raise RuntimeError("SMTP_USE_AUTH=true but SMTP_USER/SMTP_PASS not set")
                s.login(cfg.user, cfg.password)

            s.sendmail(cfg.from_email, [to_email], msg.as_string())

    except Exception as e:
        logger.exception("Email send failed to=%s error=%r", to_email, e)
        raise

    logger.info("Email sent to=%s subject=%s", to_email, subject)
    return True
