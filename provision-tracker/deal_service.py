# provision-tracker/deal_service.py
"""
Persistence around the commission engine.

The engine itself is pure; these functions load ORM rows, hand strict records
to it and write the results back. Each write path locks the deal row and is
meant to run inside one transaction that the caller commits.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

import credit_window
from commission import calculate_deal_commission
from exceptions import (
    CompanyNotFoundError,
    CreditWindowClosedError,
    DataIntegrityError,
    DealNotFoundError,
    InvalidDealError,
)
from models import (
    AdminApproval,
    Commission,
    CommissionStatus,
    Company,
    Deal,
    LeadShare,
    SystemLog,
)
from schemas import CommissionCalculation, CommissionCheck, CompanyRecord, DealRecord, LeadShareRecord
from utils import to_utc
from validator import validate_deal_for_commission

logger = logging.getLogger(__name__)

SHARING_METHODS = ("email", "api", "manual", "bulk")


def log_event(db: Session, event_type: str, source: str, message: str, data: dict = None):
    db.add(SystemLog(type=event_type, source=source, message=message, data=data))
    logger.info(message)


def _credited_names(deal: Deal) -> set:
    names = set(deal.credited_companies or [])
    names.update(c.company_name for c in deal.commissions if c.credited_back)
    return names


def deal_to_dict(deal: Deal) -> dict:
    credited = _credited_names(deal)
    return {
        "id": deal.id,
        "title": deal.title or "",
        "opener": deal.opener or "",
        "contact_person": deal.contact_person,
        "created_at": deal.deal_created,
        "status": deal.status.value,
        "admin_approval": deal.admin_approval.value,
        "companies": [
            {"name": name, "lead_type": lead_type.value, "credited": name in credited}
            for name, lead_type in deal.company_slots()
        ],
        "total_commission": deal.total_commission,
        "base_bonus": deal.base_bonus,
        "commissions": [
            {
                "company_name": c.company_name,
                "lead_type": c.lead_type.value,
                "amount": c.lead_type_amount,
                "credited_back": c.credited_back,
                "credited_at": c.credited_at,
            }
            for c in deal.commissions
        ],
        "credited_companies": sorted(credited),
    }


def deal_to_record(deal: Deal) -> DealRecord:
    return DealRecord.model_validate(deal_to_dict(deal))


def _lock_deal(db: Session, deal_id: int) -> Deal:
    deal = db.query(Deal).filter(Deal.id == deal_id).with_for_update().one_or_none()
    if deal is None:
        raise DealNotFoundError(deal_id)
    return deal


def _line_status(deal: Deal, commission: Commission) -> CommissionStatus:
    if commission.credited_back:
        return CommissionStatus.CREDITED
    if deal.admin_approval == AdminApproval.APPROVED:
        return CommissionStatus.APPROVED
    return CommissionStatus.PENDING


def sync_commission_lines(db: Session, deal: Deal):
    """One Commission row per assigned company; credited rows are never dropped."""
    existing = {c.company_name: c for c in deal.commissions}
    assigned = set()
    for name, lead_type in deal.company_slots():
        assigned.add(name)
        line = existing.get(name)
        if line is None:
            line = Commission.for_company(name, lead_type)
            deal.commissions.append(line)
            existing[name] = line
        elif line.lead_type != lead_type and not line.credited_back:
            line.change_lead_type(lead_type)
        line.status = _line_status(deal, line)
    for name, line in existing.items():
        if name not in assigned and not line.credited_back:
            deal.commissions.remove(line)
    db.flush()


def _should_persist(deal: Deal, eligible: bool, force: bool) -> bool:
    """Eligible deals get a total when forced or never calculated. An ineligible
    deal never gets a first total, but a forced write refreshes the one it has."""
    if eligible:
        return force or deal.total_commission is None
    return force and deal.total_commission is not None


def _persist_totals(deal: Deal, calculation: CommissionCalculation):
    deal.total_commission = calculation.total
    deal.base_bonus = calculation.base_bonus


def recalculate_commission(db: Session, deal_id: int, force: bool = False, source: str = "api") -> CommissionCheck:
    """Validate, calculate and (per ``_should_persist``) persist a deal's commission.

    Commission rows follow the company slots whether or not the deal is
    eligible, so a total left on a deal that lost its companies is zeroed by
    the next forced run.
    """
    deal = _lock_deal(db, deal_id)
    record = deal_to_record(deal)
    validation = validate_deal_for_commission(record)
    if not validation.is_valid:
        logger.info("Deal %s not eligible for commission: %s", deal_id, "; ".join(validation.reasons))

    calculation = calculate_deal_commission(record.companies)
    sync_commission_lines(db, deal)

    persisted = False
    if _should_persist(deal, validation.is_valid, force):
        previous = deal.total_commission
        _persist_totals(deal, calculation)
        persisted = True
        log_event(db, "commission_calculation", source, f"Commission calculated for deal {deal_id}", {
            "deal_id": deal_id,
            "eligible": validation.is_valid,
            "previous_commission": previous,
            "new_commission": calculation.total,
            "breakdown": [item.model_dump(mode="json") for item in calculation.breakdown],
        })
    db.flush()
    if not validation.is_valid:
        return CommissionCheck(deal_id=deal_id, is_eligible=False, validation_errors=validation.reasons, persisted=persisted)
    return CommissionCheck(deal_id=deal_id, is_eligible=True, commission=calculation, persisted=persisted)


def credit_back(db: Session, deal_id: int, company_name: str, now: datetime, reason: str = "Krediterad av bolag") -> CommissionCalculation:
    """Reverse a company's commission on a deal while its credit window is open.

    The line item is kept with ``credited_back`` set; the deal total is
    recomputed in the same transaction and stored as a forced write under
    ``_should_persist``, so an ineligible deal never gains a total. Crediting
    an already credited company changes nothing.
    """
    now = to_utc(now)
    deal = _lock_deal(db, deal_id)
    share = (
        db.query(LeadShare)
        .join(Company, LeadShare.company_id == Company.id)
        .filter(LeadShare.deal_id == deal_id, Company.name == company_name)
        .one_or_none()
    )
    if share is None:
        raise CreditWindowClosedError(f"Deal {deal_id} was never shared with {company_name!r}.")
    if now >= to_utc(share.credit_window_expires):
        raise CreditWindowClosedError(
            f"Credit window for {company_name!r} on deal {deal_id} closed at {to_utc(share.credit_window_expires).isoformat()}."
        )
    if company_name not in {name for name, _ in deal.company_slots()}:
        raise InvalidDealError(f"{company_name!r} is not assigned to deal {deal_id}.")

    sync_commission_lines(db, deal)
    line = next(c for c in deal.commissions if c.company_name == company_name)
    if not line.credited_back:
        line.credited_back = True
        line.credited_at = now
        line.credit_reason = reason
        line.status = CommissionStatus.CREDITED
        # Reassign so the JSON column is flagged dirty.
        deal.credited_companies = sorted(set(deal.credited_companies or []) | {company_name})
        log_event(db, "commission_credit", "admin", f"{company_name} credited back deal {deal_id}", {
            "deal_id": deal_id,
            "company_name": company_name,
            "amount": line.lead_type_amount,
            "reason": reason,
        })

    record = deal_to_record(deal)
    calculation = calculate_deal_commission(record.companies)
    if _should_persist(deal, validate_deal_for_commission(record).is_valid, force=True):
        _persist_totals(deal, calculation)
    db.flush()
    return calculation


def share_lead(db: Session, deal_id: int, company_ids: list, shared_by: str, sharing_method: str, now: datetime) -> dict:
    """Share a deal with partner companies and open a credit window for each."""
    if sharing_method not in SHARING_METHODS:
        raise ValueError(f"Unknown sharing method: {sharing_method!r}")
    now = to_utc(now)
    deal = db.query(Deal).filter(Deal.id == deal_id).one_or_none()
    if deal is None:
        raise DealNotFoundError(deal_id)

    companies = db.query(Company).filter(Company.id.in_(company_ids), Company.active.is_(True)).all()
    found = {c.id for c in companies}
    missing = [cid for cid in company_ids if cid not in found]
    if missing:
        raise CompanyNotFoundError(missing)

    already = {s.company_id for s in deal.lead_shares}
    expires = credit_window.credit_window_expires(now)
    created, errors = [], []
    for company in companies:
        if company.id in already:
            errors.append(f"Already shared with {company.name}")
            continue
        share = LeadShare(
            deal_id=deal_id,
            company_id=company.id,
            shared_by=shared_by,
            shared_at=now,
            credit_window_expires=expires,
            sharing_method=sharing_method,
            email_sent_to=company.contact_email,
        )
        db.add(share)
        created.append(share)
        log_event(db, "lead_sharing", "admin", f"Lead {deal_id} shared with {company.name} via {sharing_method}", {
            "deal_id": deal_id,
            "company_id": company.id,
            "company_name": company.name,
            "shared_by": shared_by,
            "credit_window_expires": expires.isoformat(),
        })

    if created and deal.shared_with_companies_at is None:
        deal.shared_with_companies_at = now
    db.flush()
    return {
        "deal_id": deal_id,
        "shared_count": len(created),
        "total_requested": len(company_ids),
        "credit_window_expires": expires,
        "errors": errors or None,
    }


def load_alert_inputs(db: Session, lookahead_until: datetime = None):
    """Lead shares plus the deals and companies they reference, as strict records."""
    query = db.query(LeadShare).order_by(LeadShare.credit_window_expires.asc())
    if lookahead_until is not None:
        query = query.filter(LeadShare.credit_window_expires <= to_utc(lookahead_until))

    shares, deals, companies = [], {}, {}
    for share in query.all():
        if share.deal is None:
            raise DataIntegrityError(f"Lead share {share.id} references missing deal {share.deal_id}.")
        if share.company is None:
            raise DataIntegrityError(f"Lead share {share.id} references missing company {share.company_id}.")
        shares.append(LeadShareRecord(
            deal_id=share.deal_id,
            company_name=share.company.name,
            shared_at=share.shared_at,
            credit_window_expires=share.credit_window_expires,
        ))
        if share.deal_id not in deals:
            deals[share.deal_id] = deal_to_record(share.deal)
        companies[share.company.name] = CompanyRecord(
            name=share.company.name,
            contact_email=share.company.contact_email,
            active=share.company.active,
        )
    return shares, deals, companies


def load_report_deals(db: Session, start: datetime, end: datetime, opener: str = None) -> list:
    """Deals created in [start, end) as plain dicts; the report validates each one."""
    query = db.query(Deal).filter(Deal.deal_created >= to_utc(start), Deal.deal_created < to_utc(end))
    if opener:
        query = query.filter(Deal.opener == opener)
    return [deal_to_dict(deal) for deal in query.order_by(Deal.deal_created.desc()).all()]
