# provision-tracker/alert_client.py
import logging
from dataclasses import dataclass, field

import requests

from config import Settings
from notifications import NotificationContent

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    emails_sent: int = 0
    webhooks_sent: int = 0
    slack_sent: int = 0
    errors: list = field(default_factory=list)

    @property
    def sent(self) -> int:
        return self.emails_sent + self.webhooks_sent + self.slack_sent


def _post(url: str, payload: dict):
    response = requests.post(url, json=payload, timeout=5)
    response.raise_for_status()


def send_email(recipient: str, content: NotificationContent):
    # No mail transport is wired up; the email is logged in its place.
    logger.info("Credit window email to %s: %s (%s)", recipient, content.email.subject, content.summary)


def deliver_notifications(content: NotificationContent, settings: Settings) -> DeliveryResult:
    result = DeliveryResult()

    if settings.enable_daily_notifications:
        for recipient in settings.notification_emails:
            send_email(recipient, content)
            result.emails_sent += 1

    if not settings.notification_webhook_url:
        logger.info("CREDIT_NOTIFICATION_WEBHOOK is not set. Skipping webhook.")
    else:
        try:
            _post(settings.notification_webhook_url, content.webhook)
            result.webhooks_sent += 1
            logger.info("Sent credit window webhook: %s", content.summary)
        except requests.exceptions.RequestException as e:
            logger.warning("Failed to send credit window webhook: %s", e)
            result.errors.append(f"Webhook error: {e}")

    if not settings.slack_webhook_url:
        logger.info("SLACK_WEBHOOK_URL is not set. Skipping Slack.")
    else:
        try:
            _post(settings.slack_webhook_url, content.chat)
            result.slack_sent += 1
            logger.info("Sent credit window Slack message: %s", content.summary)
        except requests.exceptions.RequestException as e:
            logger.warning("Failed to send Slack notification: %s", e)
            result.errors.append(f"Slack error: {e}")

    return result
