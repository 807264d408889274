import logging

from app.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.account_store import AccountStore
from app.services.expiration_sweeper import ExpirationSweeper
from app.services.notifications import build_dispatcher

logger = logging.getLogger(__name__)

# Channels are chosen once per worker process
_dispatcher = None


def get_dispatcher():
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher


@celery_app.task(name="expire_accounts_sweep")
def expire_accounts_sweep():
    db = SessionLocal()
    try:
        sweeper = ExpirationSweeper(AccountStore(db), get_dispatcher())
        report = sweeper.run()
        return {"status": "success", **report.as_dict()}
    except Exception as e:
        db.rollback()
        logger.exception("[Sweeper] Sweep failed: %s", e)
        raise
    finally:
        db.close()
