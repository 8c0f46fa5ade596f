# provision-tracker/config.py

"""
Central configuration for the Provision Tracker.
-- Commission rules, credit window and report layout --
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

# --- Commission Rates (SEK, whole kronor) ---
COMMISSION_RATES = {
    "base_bonus": 100,
    "OFFERT": 100,
    "PLATSBESOK": 300,
}

BREAKDOWN_DESCRIPTIONS = {
    "base_bonus": "Grundbonus (en gång per affär)",
    "offert": "Offert provision",
    "platsbesok": "Platsbesök provision",
    "credited_adjustment": "Krediterad av bolag",
}

# --- Business Rules ---
BUSINESS_RULES = {
    "credit_window_days": 14,
    "max_companies_per_lead": 4,
    "expiring_threshold_days": 2,
    "alert_lookahead_days": 3,
}

URGENCY_TIERS = {
    "critical": 1,
    "high": 3,
}

# --- Commission Eligibility ---
# Every failing rule contributes its message; the deal is eligible only if all pass.
COMMISSION_ELIGIBILITY_RULES = [
    {"check": "status_in", "value": ["WON"], "message": "Deal has not reached the qualifying stage (WON)."},
    {"check": "min_companies", "value": 1, "message": "Deal has no company assignments."},
    {"check": "approval_not", "value": "REJECTED", "message": "Deal has been rejected by an admin."},
    {"check": "max_companies", "value": BUSINESS_RULES["max_companies_per_lead"], "message": "Deal has more than 4 company assignments."},
    {"check": "unique_companies", "message": "A company is assigned more than once."},
]

# --- Report Layout ---
CSV_COLUMNS = [
    "Deal ID",
    "Title",
    "Opener",
    "Contact Person",
    "Created Date",
    "Status",
    "Companies",
    "Lead Types",
    "Total Commission",
    "Credits",
    "Net Commission",
]

REPORT_PERIODS = ("today", "week", "month", "year", "custom")

# --- Pipedrive Deal Fields ---
# Custom field API keys for the four company slots. Override with the account's hashes.
PIPEDRIVE_FIELD_KEYS = {
    "opener": os.getenv("PIPEDRIVE_FIELD_OPENER", "opener"),
    "contact_person": "person_name",
    "companies": [
        {
            "company": os.getenv(f"PIPEDRIVE_FIELD_COMPANY{n}", f"company{n}"),
            "lead_type": os.getenv(f"PIPEDRIVE_FIELD_COMPANY{n}_LEAD_TYPE", f"company{n}_lead_type"),
        }
        for n in range(1, BUSINESS_RULES["max_companies_per_lead"] + 1)
    ],
}

PIPEDRIVE_STATUS_MAP = {
    "open": "OPEN",
    "won": "WON",
    "lost": "LOST",
}


def _as_bool(value, default=False):
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_list(value):
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Runtime settings, read from the environment once and passed explicitly."""

    database_url: str = "sqlite:///./provision.db"
    redis_url: str | None = None
    pipedrive_api_token: str | None = None
    pipedrive_api_host: str = "https://api.pipedrive.com"
    notification_emails: list[str] = field(default_factory=list)
    notification_webhook_url: str | None = None
    slack_webhook_url: str | None = None
    enable_daily_notifications: bool = True
    expiring_days: int = BUSINESS_RULES["alert_lookahead_days"]

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            redis_url=os.getenv("REDIS_URL"),
            pipedrive_api_token=os.getenv("PIPEDRIVE_API_TOKEN"),
            pipedrive_api_host=os.getenv("PIPEDRIVE_API_HOST", cls.pipedrive_api_host),
            notification_emails=_as_list(os.getenv("CREDIT_NOTIFICATION_EMAILS")),
            notification_webhook_url=os.getenv("CREDIT_NOTIFICATION_WEBHOOK"),
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL"),
            enable_daily_notifications=_as_bool(os.getenv("ENABLE_DAILY_NOTIFICATIONS"), True),
            expiring_days=int(os.getenv("CREDIT_EXPIRING_DAYS", BUSINESS_RULES["alert_lookahead_days"])),
        )
