import logging
import os
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

logger = logging.getLogger(__name__)

# Load settings from .env; an empty EMAIL_HOST disables delivery
EMAIL_HOST = os.getenv("EMAIL_HOST", "")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", 587))
EMAIL_USER = os.getenv("EMAIL_USER", "")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "no-reply@school.edu")
SCHEDULE_URL = os.getenv("SCHEDULE_URL", "http://localhost:3000/teacher")

ROW = '<tr><td style="padding: 8px; border: 1px solid #ddd; font-weight: bold;">{label}:</td><td style="padding: 8px; border: 1px solid #ddd;">{value}</td></tr>'


def _render(heading: str, greeting_name: str, intro: str, rows: dict, footer: str = "") -> str:
    table = "\n".join(ROW.format(label=label, value=value) for label, value in rows.items())
    return f"""
    <html>
    <body style="font-family: sans-serif; padding: 20px; border: 1px solid #ddd; max-width: 600px; margin: auto;">
        <h3 style="color: #4f46e5;">{heading}</h3>
        <p>Dear {greeting_name},</p>
        <p>{intro}</p>
        <table style="width: 100%; border-collapse: collapse; margin-top: 15px;">
            {table}
        </table>
        <p style="margin-top: 20px;">{footer}</p>
    </body>
    </html>
    """


def send_email(to_email: str, subject: str, body_html: str) -> bool:
    """
    Sends an HTML email using the SMTP settings from the environment.
    Best-effort: failures are logged and reported as False, never raised.
    """
    if not EMAIL_HOST:
        logger.info("Email not configured. Would send %r to %s", subject, to_email)
        return False

    msg = MIMEMultipart("alternative")
    msg['Subject'] = subject
    msg['From'] = EMAIL_FROM
    msg['To'] = to_email
    msg.attach(MIMEText(body_html, 'html'))

    try:
        with smtplib.SMTP(EMAIL_HOST, EMAIL_PORT, timeout=15) as server:
            server.starttls()  # Secure the connection
            if EMAIL_USER:
                server.login(EMAIL_USER, EMAIL_PASSWORD)
            server.sendmail(EMAIL_FROM, to_email, msg.as_string())
        logger.info("Email %r sent to %s", subject, to_email)
        return True
    except (smtplib.SMTPException, OSError):
        logger.warning("Failed to send email %r to %s", subject, to_email, exc_info=True)
        return False


def send_coverage_assignment_email(email: str, name: str, class_name: str, time_range: str, date: str) -> bool:
    """Tells a substitute which class they are covering and when."""
    body_html = _render(
        "Coverage Assignment",
        name,
        "You have been assigned to cover a class due to an absence.",
        {"Class": class_name, "Time": time_range, "Date": date},
        f'Please check the updated schedule: <a href="{SCHEDULE_URL}">View Schedule</a>',
    )
    return send_email(email, f"Coverage Assignment - {date} {time_range}", body_html)


def send_absence_notification_email(email: str, name: str, date: str, reason: str | None) -> bool:
    body_html = _render(
        "Absence Notification",
        name,
        f"You have been marked absent for <strong>{date}</strong>.",
        {"Date": date, "Reason": reason or "Not specified"},
        "Coverage has been automatically assigned for your classes.",
    )
    return send_email(email, "Absence Notification", body_html)
