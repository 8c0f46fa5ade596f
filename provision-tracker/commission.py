"""Commission calculation for the solar lead business.

A setter earns a base bonus once per deal that has at least one partner
company, plus a fixed amount per company depending on the lead type the
company bought. Companies that credited the lead back earn nothing.

Usage:
    result = calculate_deal_commission([
        CompanyAssignment(name="Solkraft AB", lead_type="OFFERT"),
        CompanyAssignment(name="Takel AB", lead_type="PLATSBESOK"),
    ])
    result.total  # 500
"""
from typing import Iterable, Sequence

import config
from exceptions import InvalidDealError
from schemas import (
    AdminApproval,
    BreakdownItem,
    CommissionCalculation,
    CompanyAssignment,
    DealRecord,
    LeadType,
)

_LINE_TYPES = {
    LeadType.OFFERT: "offert",
    LeadType.PLATSBESOK: "platsbesok",
}


def lead_type_amount(lead_type: LeadType) -> int:
    return config.COMMISSION_RATES[LeadType(lead_type).value]


def _check_assignments(companies) -> Sequence[CompanyAssignment]:
    if companies is None:
        raise InvalidDealError("Company assignments are required (got None).")
    companies = list(companies)
    for company in companies:
        if not isinstance(company, CompanyAssignment):
            raise InvalidDealError(f"Expected CompanyAssignment, got {type(company).__name__}.")
    limit = config.BUSINESS_RULES["max_companies_per_lead"]
    if len(companies) > limit:
        raise InvalidDealError(f"A deal can have at most {limit} companies, got {len(companies)}.")
    return companies


def calculate_deal_commission(
    companies: Iterable[CompanyAssignment],
    include_credit_adjustments: bool = False,
) -> CommissionCalculation:
    """Calculate the commission breakdown for one deal.

    The breakdown mirrors the input order. With ``include_credit_adjustments``
    a credited company keeps its line and gets a negated
    ``credited_adjustment`` line after it, so totals are unchanged.
    """
    companies = _check_assignments(companies)
    descriptions = config.BREAKDOWN_DESCRIPTIONS
    breakdown = []

    base_bonus = config.COMMISSION_RATES["base_bonus"] if companies else 0
    if base_bonus:
        breakdown.append(BreakdownItem(type="base_bonus", amount=base_bonus, description=descriptions["base_bonus"]))

    per_type = {LeadType.OFFERT: 0, LeadType.PLATSBESOK: 0}
    for company in companies:
        amount = lead_type_amount(company.lead_type)
        line_type = _LINE_TYPES[company.lead_type]
        if company.credited:
            if include_credit_adjustments:
                breakdown.append(BreakdownItem(type=line_type, amount=amount, description=descriptions[line_type], company_name=company.name))
                breakdown.append(BreakdownItem(type="credited_adjustment", amount=-amount, description=descriptions["credited_adjustment"], company_name=company.name))
            continue
        per_type[company.lead_type] += amount
        breakdown.append(BreakdownItem(type=line_type, amount=amount, description=descriptions[line_type], company_name=company.name))

    return CommissionCalculation(
        base_bonus=base_bonus,
        offert_commissions=per_type[LeadType.OFFERT],
        platsbesok_commissions=per_type[LeadType.PLATSBESOK],
        total=sum(item.amount for item in breakdown),
        breakdown=breakdown,
    )


def calculate_monthly_commission(deals: Iterable[DealRecord], month: int, year: int) -> dict:
    """Approved and pending commission for deals created in the given month (1-12)."""
    monthly = [d for d in deals if d.created_at.month == month and d.created_at.year == year]
    approved = sum(d.total_commission or 0 for d in monthly if d.admin_approval == AdminApproval.APPROVED)
    pending = sum(d.total_commission or 0 for d in monthly if d.admin_approval == AdminApproval.PENDING)
    return {
        "approved": approved,
        "pending": pending,
        "total": approved + pending,
        "deal_count": len(monthly),
    }


def calculate_goal_progress(current_amount: int, goal_amount: int) -> dict:
    if goal_amount <= 0:
        raise ValueError("goal_amount must be positive")
    percentage = min(round(current_amount * 100 / goal_amount), 100)
    return {
        "percentage": percentage,
        "remaining": max(goal_amount - current_amount, 0),
        "achieved": current_amount >= goal_amount,
    }


def commission_breakdown_by_type(deals: Iterable[DealRecord]) -> dict:
    """Totals per commission type over APPROVED deals."""
    total_base = total_offert = total_platsbesok = 0
    for deal in deals:
        if deal.admin_approval != AdminApproval.APPROVED:
            continue
        result = calculate_deal_commission(deal.companies)
        total_base += result.base_bonus
        total_offert += result.offert_commissions
        total_platsbesok += result.platsbesok_commissions
    return {
        "total_base": total_base,
        "total_offert": total_offert,
        "total_platsbesok": total_platsbesok,
        "total_commission": total_base + total_offert + total_platsbesok,
    }
