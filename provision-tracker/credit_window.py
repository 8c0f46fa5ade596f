"""Credit window tracking for shared leads.

A partner company may return a lead within 14 days of it being shared and
have its commission reversed. Window state is derived from the expiry and the
current time on every call; nothing here is cached or stored.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

import config
from exceptions import DataIntegrityError
from schemas import AlertCompany, AlertSummary, CompanyRecord, CreditAlert, DealRecord, LeadShareRecord
from utils import ceil_days_between, to_utc

logger = logging.getLogger(__name__)

ACTIVE, EXPIRING, EXPIRED = "active", "expiring", "expired"


def credit_window_expires(shared_at: datetime) -> datetime:
    return to_utc(shared_at) + timedelta(days=config.BUSINESS_RULES["credit_window_days"])


def days_remaining(expires: datetime, now: datetime) -> int:
    return max(0, ceil_days_between(now, expires))


def window_status(expires: datetime, now: datetime, expiring_threshold: int = None) -> str:
    if expiring_threshold is None:
        expiring_threshold = config.BUSINESS_RULES["expiring_threshold_days"]
    if to_utc(now) >= to_utc(expires):
        return EXPIRED
    if days_remaining(expires, now) <= expiring_threshold:
        return EXPIRING
    return ACTIVE


def urgency(days: int) -> str:
    if days <= config.URGENCY_TIERS["critical"]:
        return "critical"
    if days <= config.URGENCY_TIERS["high"]:
        return "high"
    return "medium"


def share_status(share: LeadShareRecord, now: datetime, expiring_threshold: int = None) -> dict:
    """Window state of a single share, for per-share listings."""
    remaining = days_remaining(share.credit_window_expires, now)
    return {
        "deal_id": share.deal_id,
        "company_name": share.company_name,
        "credit_window_expires": share.credit_window_expires,
        "days_remaining": remaining,
        "status": window_status(share.credit_window_expires, now, expiring_threshold),
    }


def _has_credited(deal: DealRecord, company_name: str) -> bool:
    if company_name in deal.credited_companies:
        return True
    return any(c.company_name == company_name and c.credited_back for c in deal.commissions)


def compute_alerts(
    lead_shares: Iterable[LeadShareRecord],
    deals: Mapping[int, DealRecord],
    companies: Mapping[str, CompanyRecord],
    now: datetime,
    lookahead_days: Optional[int] = None,
    expiring_threshold: int = None,
) -> List[CreditAlert]:
    """Group lead shares by deal and derive one alert per deal.

    The group's clock is its earliest expiry. With ``lookahead_days`` only
    shares expiring within that many days from ``now`` are considered. A share
    pointing at an unknown deal or company raises ``DataIntegrityError``.
    """
    now = to_utc(now)
    horizon = now + timedelta(days=lookahead_days) if lookahead_days is not None else None

    groups: Dict[int, List[LeadShareRecord]] = {}
    for share in lead_shares:
        if share.deal_id not in deals:
            raise DataIntegrityError(f"Lead share for {share.company_name!r} references missing deal {share.deal_id}.")
        if share.company_name not in companies:
            raise DataIntegrityError(f"Lead share on deal {share.deal_id} references missing company {share.company_name!r}.")
        if horizon is not None and share.credit_window_expires > horizon:
            continue
        groups.setdefault(share.deal_id, []).append(share)

    alerts = []
    for deal_id, shares in groups.items():
        deal = deals[deal_id]
        first = min(shares, key=lambda s: s.credit_window_expires)
        remaining = days_remaining(first.credit_window_expires, now)
        alert_companies = [
            AlertCompany(
                name=share.company_name,
                email=companies[share.company_name].contact_email,
                has_credited=_has_credited(deal, share.company_name),
            )
            for share in shares
        ]
        alerts.append(CreditAlert(
            deal_id=deal.id,
            deal_title=deal.title,
            opener=deal.opener or "Okänd",
            companies=alert_companies,
            shared_at=first.shared_at,
            credit_window_expires=first.credit_window_expires,
            days_remaining=remaining,
            status=window_status(first.credit_window_expires, now, expiring_threshold),
            urgency=urgency(remaining),
            has_credited_companies=any(c.has_credited for c in alert_companies),
        ))

    alerts.sort(key=lambda a: (a.credit_window_expires, a.deal_id))
    logger.debug("Computed %d credit window alerts at %s", len(alerts), now.isoformat())
    return alerts


def summarize_alerts(alerts: Iterable[CreditAlert]) -> AlertSummary:
    summary = AlertSummary()
    for alert in alerts:
        summary.total += 1
        setattr(summary, alert.status, getattr(summary, alert.status) + 1)
        if alert.urgency == "critical":
            summary.critical += 1
    return summary
