from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

import config
from utils import parse_pipedrive_time, to_utc


class LeadType(str, Enum):
    OFFERT = "OFFERT"
    PLATSBESOK = "PLATSBESOK"


class DealStatus(str, Enum):
    OPEN = "OPEN"
    WON = "WON"
    LOST = "LOST"


class AdminApproval(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class _Strict(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# --- Core inputs ---
class CompanyAssignment(_Strict):
    name: str = Field(min_length=1)
    lead_type: LeadType
    credited: bool = False


class CommissionLine(_Strict):
    company_name: str
    lead_type: LeadType
    amount: int = Field(ge=0)
    credited_back: bool = False
    credited_at: Optional[datetime] = None


class DealRecord(_Strict):
    id: int
    title: str = ""
    opener: str = ""
    contact_person: Optional[str] = None
    created_at: datetime
    status: DealStatus = DealStatus.OPEN
    admin_approval: AdminApproval = AdminApproval.PENDING
    companies: List[CompanyAssignment] = Field(default_factory=list)
    total_commission: Optional[int] = None
    base_bonus: Optional[int] = None
    commissions: List[CommissionLine] = Field(default_factory=list)
    credited_companies: List[str] = Field(default_factory=list)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @classmethod
    def from_pipedrive(cls, raw: dict, field_keys: dict = None) -> "DealRecord":
        """Converts a raw Pipedrive v1 deal object into a DealRecord.

        Company slots are read from the custom fields named in
        ``config.PIPEDRIVE_FIELD_KEYS``; empty slots are skipped. Raises
        pydantic ``ValidationError`` for payloads that do not fit.
        """
        keys = field_keys or config.PIPEDRIVE_FIELD_KEYS
        companies = []
        for slot in keys["companies"]:
            name = raw.get(slot["company"])
            lead_type = raw.get(slot["lead_type"])
            if name and lead_type:
                companies.append({"name": name, "lead_type": str(lead_type).upper()})

        owner = raw.get("user_id")
        opener = raw.get(keys["opener"]) or (owner.get("name") if isinstance(owner, dict) else raw.get("owner_name"))
        return cls.model_validate({
            "id": raw.get("id"),
            "title": raw.get("title") or "",
            "opener": opener or "",
            "contact_person": raw.get(keys["contact_person"]),
            "created_at": parse_pipedrive_time(raw.get("add_time")),
            "status": config.PIPEDRIVE_STATUS_MAP.get(raw.get("status"), raw.get("status")),
            "companies": companies,
        })


class LeadShareRecord(_Strict):
    deal_id: int
    company_name: str
    shared_at: datetime
    credit_window_expires: datetime

    @field_validator("shared_at", "credit_window_expires")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class CompanyRecord(_Strict):
    name: str
    contact_email: Optional[str] = None
    active: bool = True


# --- Calculation / validation results ---
class BreakdownItem(BaseModel):
    type: str
    amount: int
    description: str
    company_name: Optional[str] = None


class CommissionCalculation(BaseModel):
    base_bonus: int
    offert_commissions: int
    platsbesok_commissions: int
    total: int
    breakdown: List[BreakdownItem]


class ValidationResult(BaseModel):
    is_valid: bool
    reasons: List[str] = Field(default_factory=list)


class CommissionCheck(BaseModel):
    deal_id: int
    is_eligible: bool
    validation_errors: List[str] = Field(default_factory=list)
    commission: Optional[CommissionCalculation] = None
    persisted: bool = False


# --- Credit window alerts ---
class AlertCompany(BaseModel):
    name: str
    email: Optional[str] = None
    has_credited: bool = False


class CreditAlert(BaseModel):
    deal_id: int
    deal_title: str
    opener: str
    companies: List[AlertCompany]
    shared_at: datetime
    credit_window_expires: datetime
    days_remaining: int
    status: str
    urgency: str
    has_credited_companies: bool


class AlertSummary(BaseModel):
    total: int = 0
    active: int = 0
    expiring: int = 0
    expired: int = 0
    critical: int = 0


# --- Reports ---
class ReportMetadata(BaseModel):
    period: str
    start_date: datetime
    end_date: datetime
    generated_at: datetime


class ReportSummary(BaseModel):
    total_deals: int
    approved_deals: int
    pending_deals: int
    rejected_deals: int
    approval_rate: float
    total_commission: int
    total_credits: int
    net_commission: int
    formatted_totals: dict


class ReportDealRow(BaseModel):
    id: int
    title: str
    opener: str
    contact_person: Optional[str] = None
    created_at: datetime
    admin_approval: AdminApproval
    companies: List[str]
    lead_types: List[str]
    total_commission: int
    credits: int
    net_commission: int


class ReportError(BaseModel):
    deal_id: Optional[int] = None
    error: str


class CommissionReport(BaseModel):
    metadata: ReportMetadata
    summary: ReportSummary
    deals: List[ReportDealRow]
    errors: List[ReportError] = Field(default_factory=list)
