import pytest

import deal_service
from exceptions import CompanyNotFoundError, CreditWindowClosedError, DealNotFoundError
from models import AdminApproval, Commission, CommissionStatus, Company, Deal, LeadShare, LeadType, SystemLog
from tests.conftest import utc

SHARED_AT = utc(2024, 1, 2, 9)


def _company_ids(db_session, *names):
    return [db_session.query(Company).filter_by(name=name).one().id for name in names]


def _share_all(db_session, deal):
    ids = _company_ids(db_session, "Solkraft AB", "Takel AB")
    deal_service.share_lead(db_session, deal.id, ids, "admin@proffskontakt.se", "email", SHARED_AT)
    db_session.commit()


class TestRecalculateCommission:
    def test_persists_totals_and_lines(self, db_session, seeded_deal):
        check = deal_service.recalculate_commission(db_session, seeded_deal.id)
        db_session.commit()

        assert check.is_eligible
        assert check.persisted
        assert check.commission.total == 500
        deal = db_session.get(Deal, seeded_deal.id)
        assert (deal.total_commission, deal.base_bonus) == (500, 100)
        lines = {c.company_name: c for c in deal.commissions}
        assert lines["Solkraft AB"].lead_type_amount == 100
        assert lines["Takel AB"].lead_type_amount == 300
        assert {c.status for c in deal.commissions} == {CommissionStatus.APPROVED}
        log = db_session.query(SystemLog).filter_by(type="commission_calculation").one()
        assert log.data["new_commission"] == 500

    def test_existing_total_kept_unless_forced(self, db_session, seeded_deal):
        seeded_deal.total_commission = 999
        db_session.commit()

        check = deal_service.recalculate_commission(db_session, seeded_deal.id)
        assert not check.persisted
        assert db_session.get(Deal, seeded_deal.id).total_commission == 999

        check = deal_service.recalculate_commission(db_session, seeded_deal.id, force=True)
        assert check.persisted
        assert db_session.get(Deal, seeded_deal.id).total_commission == 500

    def test_ineligible_deal_returns_reasons(self, db_session, seeded_deal):
        seeded_deal.admin_approval = AdminApproval.REJECTED
        db_session.commit()

        check = deal_service.recalculate_commission(db_session, seeded_deal.id)

        assert not check.is_eligible
        assert check.validation_errors == ["Deal has been rejected by an admin."]
        assert check.commission is None
        assert not check.persisted
        assert db_session.get(Deal, seeded_deal.id).total_commission is None

    def test_forced_run_zeroes_total_of_emptied_deal(self, db_session, seeded_deal):
        deal_service.recalculate_commission(db_session, seeded_deal.id)
        seeded_deal.set_company_slots([])
        db_session.commit()

        check = deal_service.recalculate_commission(db_session, seeded_deal.id, force=True)
        db_session.commit()

        assert not check.is_eligible
        assert check.persisted
        deal = db_session.get(Deal, seeded_deal.id)
        assert (deal.total_commission, deal.base_bonus) == (0, 0)
        assert db_session.query(Commission).filter_by(deal_id=seeded_deal.id).count() == 0

    def test_removed_company_line_dropped(self, db_session, seeded_deal):
        deal_service.recalculate_commission(db_session, seeded_deal.id)
        seeded_deal.set_company_slots([("Solkraft AB", LeadType.PLATSBESOK)])
        db_session.commit()

        check = deal_service.recalculate_commission(db_session, seeded_deal.id, force=True)
        db_session.commit()

        assert check.commission.total == 400
        lines = db_session.query(Commission).filter_by(deal_id=seeded_deal.id).all()
        assert [(c.company_name, c.lead_type, c.lead_type_amount) for c in lines] == [("Solkraft AB", LeadType.PLATSBESOK, 300)]

    def test_missing_deal(self, db_session):
        with pytest.raises(DealNotFoundError):
            deal_service.recalculate_commission(db_session, 1)


def test_commission_amount_cannot_be_set_freely():
    line = Commission.for_company("Solkraft AB", LeadType.OFFERT)
    assert line.lead_type_amount == 100
    with pytest.raises(ValueError):
        line.lead_type_amount = 250


class TestShareLead:
    def test_opens_credit_window(self, db_session, seeded_deal):
        ids = _company_ids(db_session, "Solkraft AB", "Takel AB")
        result = deal_service.share_lead(db_session, seeded_deal.id, ids, "admin", "email", SHARED_AT)
        db_session.commit()

        assert result["shared_count"] == 2
        assert result["credit_window_expires"] == utc(2024, 1, 16, 9)
        shares = db_session.query(LeadShare).filter_by(deal_id=seeded_deal.id).all()
        assert {s.email_sent_to for s in shares} == {"lead@solkraft.se", "info@takel.se"}
        assert db_session.get(Deal, seeded_deal.id).shared_with_companies_at is not None

    def test_second_share_is_skipped(self, db_session, seeded_deal):
        _share_all(db_session, seeded_deal)
        ids = _company_ids(db_session, "Takel AB")
        result = deal_service.share_lead(db_session, seeded_deal.id, ids, "admin", "manual", utc(2024, 1, 5))
        assert result["shared_count"] == 0
        assert result["errors"] == ["Already shared with Takel AB"]

    def test_inactive_or_unknown_company(self, db_session, seeded_deal):
        with pytest.raises(CompanyNotFoundError):
            deal_service.share_lead(db_session, seeded_deal.id, _company_ids(db_session, "Vilande AB"), "admin", "api", SHARED_AT)
        with pytest.raises(CompanyNotFoundError):
            deal_service.share_lead(db_session, seeded_deal.id, [9999], "admin", "api", SHARED_AT)

    def test_unknown_deal_and_method(self, db_session, seeded_deal):
        with pytest.raises(DealNotFoundError):
            deal_service.share_lead(db_session, 1, [], "admin", "api", SHARED_AT)
        with pytest.raises(ValueError):
            deal_service.share_lead(db_session, seeded_deal.id, [], "admin", "fax", SHARED_AT)


class TestCreditBack:
    def test_credit_within_window(self, db_session, seeded_deal):
        deal_service.recalculate_commission(db_session, seeded_deal.id)
        _share_all(db_session, seeded_deal)

        calculation = deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 10))
        db_session.commit()

        assert calculation.total == 200
        deal = db_session.get(Deal, seeded_deal.id)
        assert deal.total_commission == 200
        assert deal.credited_companies == ["Takel AB"]
        line = next(c for c in deal.commissions if c.company_name == "Takel AB")
        assert line.credited_back
        assert line.lead_type_amount == 300
        assert line.status == CommissionStatus.CREDITED
        assert line.credit_reason == "Krediterad av bolag"

    def test_credit_is_idempotent(self, db_session, seeded_deal):
        _share_all(db_session, seeded_deal)
        deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 10))
        calculation = deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 11))
        db_session.commit()

        assert calculation.total == 200
        assert db_session.query(SystemLog).filter_by(type="commission_credit").count() == 1

    def test_closed_window_refused(self, db_session, seeded_deal):
        _share_all(db_session, seeded_deal)
        with pytest.raises(CreditWindowClosedError):
            deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 16, 9))

    def test_never_shared_refused(self, db_session, seeded_deal):
        with pytest.raises(CreditWindowClosedError):
            deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 10))

    def test_ineligible_deal_gains_no_total(self, db_session, seeded_deal):
        seeded_deal.admin_approval = AdminApproval.REJECTED
        db_session.commit()
        _share_all(db_session, seeded_deal)

        calculation = deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 10))
        db_session.commit()

        assert calculation.total == 200
        assert db_session.get(Deal, seeded_deal.id).total_commission is None

    def test_ineligible_deal_total_is_refreshed(self, db_session, seeded_deal):
        deal_service.recalculate_commission(db_session, seeded_deal.id)
        seeded_deal.admin_approval = AdminApproval.REJECTED
        db_session.commit()
        _share_all(db_session, seeded_deal)

        deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 10))
        db_session.commit()

        assert db_session.get(Deal, seeded_deal.id).total_commission == 200

    def test_duplicate_slot_gets_one_line(self, db_session, seeded_deal):
        seeded_deal.set_company_slots([("Solkraft AB", LeadType.OFFERT), ("Solkraft AB", LeadType.OFFERT)])
        db_session.commit()
        _share_all(db_session, seeded_deal)

        deal_service.credit_back(db_session, seeded_deal.id, "Solkraft AB", utc(2024, 1, 10))
        db_session.commit()

        lines = db_session.query(Commission).filter_by(deal_id=seeded_deal.id).all()
        assert [(c.company_name, c.credited_back) for c in lines] == [("Solkraft AB", True)]

    def test_recalculation_keeps_credit(self, db_session, seeded_deal):
        _share_all(db_session, seeded_deal)
        deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 10))
        db_session.commit()

        check = deal_service.recalculate_commission(db_session, seeded_deal.id, force=True)

        assert check.commission.total == 200
        assert db_session.query(Commission).filter_by(deal_id=seeded_deal.id, credited_back=True).count() == 1


def test_load_alert_inputs(db_session, seeded_deal):
    _share_all(db_session, seeded_deal)
    deal_service.credit_back(db_session, seeded_deal.id, "Takel AB", utc(2024, 1, 10))
    db_session.commit()

    shares, deals, companies = deal_service.load_alert_inputs(db_session)

    assert sorted(s.company_name for s in shares) == ["Solkraft AB", "Takel AB"]
    assert shares[0].credit_window_expires == utc(2024, 1, 16, 9)
    assert deals[seeded_deal.id].credited_companies == ["Takel AB"]
    assert companies["Solkraft AB"].contact_email == "lead@solkraft.se"
    assert deal_service.load_alert_inputs(db_session, lookahead_until=utc(2024, 1, 10)) == ([], {}, {})


def test_load_report_deals(db_session, seeded_deal):
    deal_service.recalculate_commission(db_session, seeded_deal.id)
    db_session.commit()

    rows = deal_service.load_report_deals(db_session, utc(2024, 1, 1), utc(2024, 2, 1))
    assert [row["id"] for row in rows] == [seeded_deal.id]
    assert rows[0]["total_commission"] == 500
    assert deal_service.load_report_deals(db_session, utc(2024, 1, 1), utc(2024, 2, 1), opener="Gustaf") == []
    assert deal_service.load_report_deals(db_session, utc(2024, 1, 2), utc(2024, 2, 1)) == []
