import csv
import io
import logging
from datetime import datetime, time, timedelta
from typing import Iterable, Optional, Union

from pydantic import ValidationError

import config
from schemas import (
    AdminApproval,
    CommissionReport,
    DealRecord,
    ReportDealRow,
    ReportError,
    ReportMetadata,
    ReportSummary,
)
from utils import format_sek, to_utc

logger = logging.getLogger(__name__)


def resolve_period(period: str, now: datetime, start: Optional[datetime] = None, end: Optional[datetime] = None):
    """Returns the [start, end) window for a named reporting period."""
    now = to_utc(now)
    if period == "today":
        day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        return day_start, day_start + timedelta(days=1)
    if period == "week":
        return now - timedelta(days=7), now
    if period == "month":
        previous_month = now.month - 1 or 12
        year = now.year if now.month > 1 else now.year - 1
        # Clamp e.g. 31 March to 28/29 February.
        day = min(now.day, _days_in_month(year, previous_month))
        return now.replace(year=year, month=previous_month, day=day), now
    if period == "year":
        day = min(now.day, _days_in_month(now.year - 1, now.month))
        return now.replace(year=now.year - 1, day=day), now
    if period == "custom":
        if start is None or end is None:
            raise ValueError("start and end are required for a custom period")
        return to_utc(start), to_utc(end)
    raise ValueError(f"Unknown report period: {period!r}")


def _days_in_month(year: int, month: int) -> int:
    first_next = datetime(year + month // 12, month % 12 + 1, 1)
    return (first_next - timedelta(days=1)).day


def _coerce(deal: Union[DealRecord, dict]) -> DealRecord:
    record = deal if isinstance(deal, DealRecord) else DealRecord.model_validate(deal)
    limit = config.BUSINESS_RULES["max_companies_per_lead"]
    if len(record.companies) > limit:
        raise ValueError(f"deal has {len(record.companies)} companies, at most {limit} allowed")
    return record


def _credited_amount(deal: DealRecord) -> int:
    return sum(line.amount for line in deal.commissions if line.credited_back)


def build_commission_report(
    deals: Iterable[Union[DealRecord, dict]],
    start: datetime,
    end: datetime,
    generated_at: datetime,
    period: str = "custom",
) -> CommissionReport:
    """Aggregate commissions and credits for deals created in [start, end).

    Gross commission counts APPROVED deals only; credits count every credited
    line in range regardless of approval. A deal that fails validation is
    reported under ``errors`` and left out of the totals.
    """
    start, end = to_utc(start), to_utc(end)
    records, errors = [], []
    for raw in deals:
        try:
            record = _coerce(raw)
        except (ValidationError, ValueError) as e:
            deal_id = raw.get("id") if isinstance(raw, dict) else getattr(raw, "id", None)
            logger.warning("Skipping deal %s in commission report: %s", deal_id, e)
            errors.append(ReportError(deal_id=deal_id if isinstance(deal_id, int) else None, error=str(e)))
            continue
        if start <= record.created_at < end:
            records.append(record)

    records.sort(key=lambda d: (d.created_at, d.id), reverse=True)

    counts = {state: 0 for state in AdminApproval}
    gross = credits = 0
    rows = []
    for deal in records:
        counts[deal.admin_approval] += 1
        total = deal.total_commission or 0
        credited = _credited_amount(deal)
        if deal.admin_approval == AdminApproval.APPROVED:
            gross += total
        credits += credited
        rows.append(ReportDealRow(
            id=deal.id,
            title=deal.title,
            opener=deal.opener,
            contact_person=deal.contact_person,
            created_at=deal.created_at,
            admin_approval=deal.admin_approval,
            companies=[c.name for c in deal.companies],
            lead_types=[c.lead_type.value for c in deal.companies],
            total_commission=total,
            credits=credited,
            net_commission=total - credited,
        ))

    total_deals = len(records)
    approved = counts[AdminApproval.APPROVED]
    net = gross - credits
    summary = ReportSummary(
        total_deals=total_deals,
        approved_deals=approved,
        pending_deals=counts[AdminApproval.PENDING],
        rejected_deals=counts[AdminApproval.REJECTED],
        approval_rate=round(approved * 100 / total_deals, 1) if total_deals else 0.0,
        total_commission=gross,
        total_credits=credits,
        net_commission=net,
        formatted_totals={
            "total_commission": format_sek(gross),
            "total_credits": format_sek(credits),
            "net_commission": format_sek(net),
        },
    )
    metadata = ReportMetadata(period=period, start_date=start, end_date=end, generated_at=to_utc(generated_at))
    return CommissionReport(metadata=metadata, summary=summary, deals=rows, errors=errors)


def report_to_csv(report: CommissionReport, delimiter: str = ",") -> str:
    """Flattens a report into a spreadsheet table with a fixed column order."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(config.CSV_COLUMNS)
    for row in report.deals:
        writer.writerow([
            row.id,
            row.title,
            row.opener,
            row.contact_person or "",
            row.created_at.date().isoformat(),
            row.admin_approval.value,
            ", ".join(row.companies),
            ", ".join(row.lead_types),
            row.total_commission,
            row.credits,
            row.net_commission,
        ])
    return buffer.getvalue()
