from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import AdminApproval, Base, Company, Deal, DealStatus, LeadType
from schemas import CompanyAssignment, DealRecord


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_record():
    def _make(deal_id=1, companies=(), **kwargs):
        defaults = {
            "id": deal_id,
            "title": f"Deal {deal_id}",
            "opener": "Moltas",
            "created_at": utc(2024, 1, 1),
            "status": "WON",
            "admin_approval": "APPROVED",
            "companies": [
                c if isinstance(c, CompanyAssignment) else CompanyAssignment(name=c[0], lead_type=c[1])
                for c in companies
            ],
        }
        defaults.update(kwargs)
        return DealRecord(**defaults)

    return _make


@pytest.fixture
def seeded_deal(db_session):
    """A won, approved deal with two companies, neither shared yet."""
    companies = [
        Company(name="Solkraft AB", contact_email="lead@solkraft.se"),
        Company(name="Takel AB", contact_email="info@takel.se"),
        Company(name="Vilande AB", contact_email=None, active=False),
    ]
    db_session.add_all(companies)
    deal = Deal(
        id=100001,
        title="Villa Solna",
        opener="Moltas",
        contact_person="Anna Svensson",
        status=DealStatus.WON,
        admin_approval=AdminApproval.APPROVED,
        deal_created=utc(2024, 1, 1),
        credited_companies=[],
    )
    deal.set_company_slots([("Solkraft AB", LeadType.OFFERT), ("Takel AB", LeadType.PLATSBESOK)])
    db_session.add(deal)
    db_session.commit()
    return deal
