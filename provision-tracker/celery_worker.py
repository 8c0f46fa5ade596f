# provision-tracker/celery_worker.py
import asyncio
import logging
from datetime import datetime, timezone

from celery import Celery
from celery.schedules import crontab
from pydantic import ValidationError
from sqlalchemy.orm.exc import StaleDataError

import alert_client
import credit_window
import deal_service
from database import SessionLocal, settings
from exceptions import ProvisionError
from models import Deal, DealStatus
from notifications import build_notification_content
from pipedrive_client import PipedriveClient
from schemas import DealRecord

logger = logging.getLogger(__name__)

celery_app = Celery("tasks", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.timezone = "Europe/Stockholm"
celery_app.conf.beat_schedule = {
    "daily-credit-window-notifications": {
        "task": "celery_worker.send_credit_window_notifications",
        "schedule": crontab(hour=9, minute=0),
    },
    "nightly-pipedrive-won-deals-sync": {
        "task": "celery_worker.sync_pipedrive_deals",
        "schedule": crontab(hour=2, minute=0),
    },
}

# A concurrent writer bumped the deal's version; the whole unit of work is redone.
RETRYABLE = (StaleDataError,)


def _now():
    return datetime.now(timezone.utc)


def upsert_deal(db_session, record: DealRecord, stage: str = None) -> Deal:
    """Writes CRM-owned fields onto the local deal. Approval and credits stay local."""
    deal = db_session.query(Deal).filter(Deal.id == record.id).with_for_update().one_or_none()
    if deal is None:
        deal = Deal(id=record.id, deal_created=record.created_at, credited_companies=[])
        db_session.add(deal)
    deal.title = record.title
    deal.opener = record.opener
    deal.contact_person = record.contact_person
    deal.status = DealStatus(record.status.value)
    if stage is not None:
        deal.stage = stage
    deal.set_company_slots((c.name, c.lead_type.value) for c in record.companies)
    db_session.flush()
    return deal


def _stage_of(raw: dict):
    return str(raw["stage_id"]) if raw.get("stage_id") else None


@celery_app.task(bind=True, autoretry_for=RETRYABLE, retry_backoff=True, max_retries=3)
def process_pipedrive_event(self, payload: dict):
    current_data = payload.get("current") or payload.get("data")
    if not current_data:
        return {"status": "Payload did not contain 'current' data object. Skipping."}
    deal_id = current_data.get("id")
    if deal_id is None:
        return {"status": "Payload deal has no id. Skipping."}
    logger.info("Received Pipedrive payload for deal %s", deal_id)

    full_deal_data = current_data
    if settings.pipedrive_api_token:
        full_deal_data = PipedriveClient(settings).get_deal(deal_id) or current_data

    try:
        record = DealRecord.from_pipedrive(full_deal_data)
    except ValidationError as e:
        logger.warning("Pipedrive deal %s could not be converted: %s", deal_id, e)
        return {"status": f"Deal {deal_id} payload is invalid. Skipping."}

    db = SessionLocal()
    try:
        upsert_deal(db, record, stage=_stage_of(full_deal_data))
        check = deal_service.recalculate_commission(db, deal_id, force=True, source="pipedrive_webhook")
        db.commit()
        if not check.is_eligible:
            return {"status": "Deal synced; not eligible for commission.", "reasons": check.validation_errors}
        return {"status": "Deal synced and commission recalculated.", "total": check.commission.total}
    except Exception:
        db.rollback()
        logger.exception("An error occurred in process_pipedrive_event for deal %s", deal_id)
        raise
    finally:
        db.close()


@celery_app.task(bind=True, autoretry_for=RETRYABLE, retry_backoff=True, max_retries=3)
def sync_pipedrive_deals(self, status: str = "won"):
    """Pulls every Pipedrive deal with the given status and upserts it, like a webhook would."""
    if not settings.pipedrive_api_token:
        logger.warning("PIPEDRIVE_API_TOKEN is not set. Skipping bulk sync.")
        return {"status": "Pipedrive is not configured. Skipping.", "synced": 0, "skipped": 0}

    raw_deals = asyncio.run(PipedriveClient(settings).get_deals_async(status=status))
    logger.info("Fetched %d %s deals from Pipedrive", len(raw_deals), status)

    db = SessionLocal()
    synced, skipped = 0, []
    try:
        for raw in raw_deals:
            try:
                record = DealRecord.from_pipedrive(raw)
            except ValidationError as e:
                logger.warning("Pipedrive deal %s could not be converted: %s", raw.get("id"), e)
                skipped.append(raw.get("id"))
                continue
            upsert_deal(db, record, stage=_stage_of(raw))
            deal_service.recalculate_commission(db, record.id, force=True, source="pipedrive_sync")
            synced += 1
        db.commit()
        return {"status": "Bulk sync finished.", "synced": synced, "skipped": len(skipped)}
    except Exception:
        db.rollback()
        logger.exception("Bulk Pipedrive sync failed")
        raise
    finally:
        db.close()


@celery_app.task(bind=True, autoretry_for=RETRYABLE, retry_backoff=True, max_retries=3)
def recalculate_deal_commission(self, deal_id: int, force: bool = False):
    db = SessionLocal()
    try:
        check = deal_service.recalculate_commission(db, deal_id, force=force, source="task")
        db.commit()
        return check.model_dump(mode="json")
    except ProvisionError as e:
        db.rollback()
        logger.warning("Commission recalculation for deal %s failed: %s", deal_id, e)
        return {"status": "error", "error": str(e)}
    except Exception:
        db.rollback()
        logger.exception("An error occurred recalculating deal %s", deal_id)
        raise
    finally:
        db.close()


@celery_app.task(bind=True, autoretry_for=RETRYABLE, retry_backoff=True, max_retries=3)
def credit_back_commission(self, deal_id: int, company_name: str, reason: str = "Krediterad av bolag"):
    db = SessionLocal()
    try:
        calculation = deal_service.credit_back(db, deal_id, company_name, _now(), reason=reason)
        db.commit()
        return {"status": "credited", "deal_id": deal_id, "total": calculation.total}
    except ProvisionError as e:
        db.rollback()
        logger.warning("Credit-back of %s on deal %s refused: %s", company_name, deal_id, e)
        return {"status": "error", "error": str(e)}
    except Exception:
        db.rollback()
        logger.exception("An error occurred crediting %s on deal %s", company_name, deal_id)
        raise
    finally:
        db.close()


@celery_app.task
def send_credit_window_notifications(manual: bool = False):
    logger.info("Running credit window notification check...")
    now = _now()
    source = "manual" if manual else "auto_notification"
    db = SessionLocal()
    try:
        shares, deals, companies = deal_service.load_alert_inputs(db)
        alerts = credit_window.compute_alerts(shares, deals, companies, now, lookahead_days=settings.expiring_days)
        if not alerts:
            deal_service.log_event(db, "credit_notification", source, "No credit window alerts to send", {"alert_count": 0})
            db.commit()
            return {"sent": 0, "alert_count": 0}

        content = build_notification_content(alerts, now)
        result = alert_client.deliver_notifications(content, settings)
        deal_service.log_event(db, "credit_notification", source, f"Credit window notifications sent: {len(alerts)} alerts", {
            "alert_count": len(alerts),
            "summary": content.webhook["summary"],
            "emails_sent": result.emails_sent,
            "webhooks_sent": result.webhooks_sent,
            "slack_sent": result.slack_sent,
            "errors": result.errors,
        })
        db.commit()
        return {"sent": result.sent, "alert_count": len(alerts), "errors": result.errors}
    except Exception:
        db.rollback()
        logger.exception("Credit window notification job failed")
        raise
    finally:
        db.close()
