# models.py
import enum
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, validates
from sqlalchemy.sql import func

import config

Base = declarative_base()


class LeadType(enum.Enum):
    OFFERT = "OFFERT"
    PLATSBESOK = "PLATSBESOK"


class DealStatus(enum.Enum):
    OPEN = "OPEN"
    WON = "WON"
    LOST = "LOST"


class AdminApproval(enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CommissionStatus(enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CREDITED = "CREDITED"


COMPANY_SLOTS = range(1, config.BUSINESS_RULES["max_companies_per_lead"] + 1)


class Deal(Base):
    __tablename__ = 'deals'

    # Pipedrive deal id, not autoincremented
    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(String, nullable=False, default="")
    opener = Column(String, nullable=False, default="", index=True)
    contact_person = Column(String, nullable=True)
    stage = Column(String, nullable=True)
    status = Column(Enum(DealStatus), nullable=False, default=DealStatus.OPEN)
    admin_approval = Column(Enum(AdminApproval), nullable=False, default=AdminApproval.PENDING)

    company1 = Column(String, nullable=True)
    company1_lead_type = Column(Enum(LeadType), nullable=True)
    company2 = Column(String, nullable=True)
    company2_lead_type = Column(Enum(LeadType), nullable=True)
    company3 = Column(String, nullable=True)
    company3_lead_type = Column(Enum(LeadType), nullable=True)
    company4 = Column(String, nullable=True)
    company4_lead_type = Column(Enum(LeadType), nullable=True)

    total_commission = Column(Integer, nullable=True)
    base_bonus = Column(Integer, nullable=True)
    credited_companies = Column(JSON, nullable=False, default=list)

    deal_created = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    shared_with_companies_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    version = Column(Integer, nullable=False)

    commissions = relationship("Commission", back_populates="deal", cascade="all, delete-orphan")
    lead_shares = relationship("LeadShare", back_populates="deal")

    __mapper_args__ = {"version_id_col": version}

    def company_slots(self):
        """(name, lead_type) for each filled slot, in slot order."""
        slots = []
        for n in COMPANY_SLOTS:
            name = getattr(self, f"company{n}")
            lead_type = getattr(self, f"company{n}_lead_type")
            if name and lead_type:
                slots.append((name, lead_type))
        return slots

    def set_company_slots(self, slots):
        slots = list(slots)
        if len(slots) > len(COMPANY_SLOTS):
            raise ValueError(f"A deal can have at most {len(COMPANY_SLOTS)} companies")
        for n in COMPANY_SLOTS:
            name, lead_type = slots[n - 1] if n <= len(slots) else (None, None)
            setattr(self, f"company{n}", name)
            setattr(self, f"company{n}_lead_type", LeadType(lead_type) if lead_type else None)


class Company(Base):
    __tablename__ = 'companies'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    contact_email = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class LeadShare(Base):
    __tablename__ = 'lead_shares'
    __table_args__ = (UniqueConstraint("deal_id", "company_id", name="uq_lead_share_deal_company"),)

    id = Column(Integer, primary_key=True, index=True)
    deal_id = Column(Integer, ForeignKey("deals.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    shared_by = Column(String, nullable=True)
    shared_at = Column(DateTime(timezone=True), nullable=False)
    # Always shared_at + credit window; set once at creation.
    credit_window_expires = Column(DateTime(timezone=True), nullable=False, index=True)
    sharing_method = Column(String, nullable=False, default="manual")
    email_sent_to = Column(String, nullable=True)

    deal = relationship("Deal", back_populates="lead_shares")
    company = relationship("Company")


class Commission(Base):
    __tablename__ = 'commissions'
    __table_args__ = (UniqueConstraint("deal_id", "company_name", name="uq_commission_deal_company"),)

    id = Column(Integer, primary_key=True, index=True)
    deal_id = Column(Integer, ForeignKey("deals.id"), nullable=False, index=True)
    company_name = Column(String, nullable=False)
    lead_type = Column(Enum(LeadType), nullable=False)
    lead_type_amount = Column(Integer, nullable=False)
    credited_back = Column(Boolean, nullable=False, default=False)
    credited_at = Column(DateTime(timezone=True), nullable=True)
    credit_reason = Column(String, nullable=True)
    status = Column(Enum(CommissionStatus), nullable=False, default=CommissionStatus.PENDING)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    deal = relationship("Deal", back_populates="commissions")

    @classmethod
    def for_company(cls, company_name, lead_type, **kwargs):
        lead_type = LeadType(lead_type)
        commission = cls(company_name=company_name, lead_type=lead_type, **kwargs)
        commission.lead_type_amount = config.COMMISSION_RATES[lead_type.value]
        return commission

    def change_lead_type(self, lead_type):
        self.lead_type = LeadType(lead_type)
        self.lead_type_amount = config.COMMISSION_RATES[self.lead_type.value]

    @validates("lead_type_amount")
    def _amount_follows_lead_type(self, key, value):
        if self.lead_type is None or value != config.COMMISSION_RATES[LeadType(self.lead_type).value]:
            raise ValueError(f"Commission amount {value} does not match lead type {self.lead_type}")
        return value


class SystemLog(Base):
    __tablename__ = 'system_logs'

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False)
    message = Column(String, nullable=False)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
