# provision-tracker/notifications.py
from datetime import datetime
from typing import List

from pydantic import BaseModel

from credit_window import summarize_alerts
from schemas import CreditAlert
from utils import to_utc


class EmailContent(BaseModel):
    subject: str
    summary: str
    body: str


class NotificationContent(BaseModel):
    summary: str
    email: EmailContent
    webhook: dict
    chat: dict


def summary_line(alerts: List[CreditAlert]) -> str:
    counts = summarize_alerts(alerts)
    return f"{counts.critical} kritiska, {counts.expiring} går ut snart, {counts.expired} utgångna"


def _alert_line(alert: CreditAlert) -> str:
    companies = ", ".join(c.name for c in alert.companies)
    return f"Lead #{alert.deal_id} - {alert.deal_title} | Öppnare: {alert.opener} | Dagar kvar: {alert.days_remaining} | Bolag: {companies}"


def build_notification_content(alerts: List[CreditAlert], now: datetime) -> NotificationContent:
    """Turns credit window alerts into email, webhook and chat payloads. Sends nothing."""
    now = to_utc(now)
    counts = summarize_alerts(alerts)
    summary = summary_line(alerts)

    sections = []
    for title, selected in (
        ("KRITISKA VARNINGAR (≤1 dag kvar)", [a for a in alerts if a.urgency == "critical"]),
        ("GÅR UT SNART", [a for a in alerts if a.status == "expiring"]),
        ("UTGÅNGNA", [a for a in alerts if a.status == "expired"]),
    ):
        if selected:
            sections.append("\n".join([title] + [f"- {_alert_line(a)}" for a in selected]))
    body = "\n\n".join(
        [f"Kreditfönster status {now.date().isoformat()}", f"Sammanfattning: {summary} ({counts.total} totalt)"] + sections
    )

    email = EmailContent(
        subject=f"Daglig Kreditfönster Rapport - {counts.total} varningar",
        summary=summary,
        body=body,
    )
    webhook = {
        "type": "credit_window_alert",
        "alerts": [a.model_dump(mode="json") for a in alerts],
        "summary": {
            "total": counts.total,
            "expiring": counts.expiring,
            "expired": counts.expired,
            "critical": counts.critical,
        },
        "timestamp": now.isoformat(),
    }

    blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": f"Kreditfönster Varning - {counts.total} leads"}},
        {"type": "section", "fields": [
            {"type": "mrkdwn", "text": f"*Kritiska:* {counts.critical}"},
            {"type": "mrkdwn", "text": f"*Går ut snart:* {counts.expiring}"},
            {"type": "mrkdwn", "text": f"*Utgångna:* {counts.expired}"},
            {"type": "mrkdwn", "text": f"*Totalt:* {counts.total}"},
        ]},
    ]
    critical = [a for a in alerts if a.urgency == "critical"]
    if critical:
        lines = "\n".join(f"• Lead #{a.deal_id} ({a.opener}) - {a.days_remaining} dagar kvar" for a in critical)
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*KRITISKA VARNINGAR:*\n{lines}"}})
    chat = {"text": f"Kreditfönster Rapport: {summary}", "blocks": blocks}

    return NotificationContent(summary=summary, email=email, webhook=webhook, chat=chat)
