import config
from exceptions import InvalidDealError
from schemas import DealRecord, ValidationResult


def _rule_passes(rule: dict, deal: DealRecord) -> bool:
    check = rule["check"]
    names = [c.name for c in deal.companies]
    if check == "status_in":
        return deal.status.value in rule["value"]
    if check == "min_companies":
        return len(names) >= rule["value"]
    if check == "max_companies":
        return len(names) <= rule["value"]
    if check == "approval_not":
        return deal.admin_approval.value != rule["value"]
    if check == "unique_companies":
        return len(set(names)) == len(names)
    raise ValueError(f"Unknown eligibility check: {check}")


def validate_deal_for_commission(deal: DealRecord, rules: list = None) -> ValidationResult:
    """
    Evaluates whether a deal is eligible for commission.

    All failing rules are reported, not just the first. Business-rule failures
    come back as ``is_valid=False``; only a missing or malformed deal raises.
    """
    if deal is None:
        raise InvalidDealError("Cannot validate a missing deal.")
    if not isinstance(deal, DealRecord):
        raise InvalidDealError(f"Expected DealRecord, got {type(deal).__name__}.")

    reasons = [
        rule["message"]
        for rule in (rules if rules is not None else config.COMMISSION_ELIGIBILITY_RULES)
        if not _rule_passes(rule, deal)
    ]
    return ValidationResult(is_valid=not reasons, reasons=reasons)
