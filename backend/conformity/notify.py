import os
import smtplib
from datetime import datetime
from email.message import EmailMessage

# purpose: deliver non-conformity reminders to detectors
# status: active

EMAIL_OUTBOX: list[tuple[str, str, str]] = []


def send_email(to_email: str, subject: str, message: str):
    if os.getenv("TESTING") == "1":
        EMAIL_OUTBOX.append((to_email, subject, message))
        return
    server = os.getenv("SMTP_SERVER")
    if not server:
        return
    from_addr = os.getenv("EMAIL_FROM", "noreply@example.com")
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_email
    msg.set_content(message)
    with smtplib.SMTP(server) as s:
        s.send_message(msg)


def send_sla_reminder(
    to_email: str,
    *,
    number: str,
    criticality: int,
    deadline: datetime,
    overdue: bool,
):
    state = "overdue" if overdue else "due soon"
    message = (
        f"Non-conformity {number} (criticality NC{criticality}) is {state}.\n"
        f"Treatment deadline: {deadline.isoformat()}"
    )
    send_email(to_email, f"NC {number} SLA {state}", message)
