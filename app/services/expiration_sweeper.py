"""
Daily reconciliation of time-based account state.

1. warn accounts expiring within the warning window (once per expiry date)
2. flip ACTIVE accounts past their expiry to EXPIRED in one conditional update
3. drop denylisted session tokens that have expired anyway

Safe to run any number of times: a second run the same day finds nothing
new to warn or expire.
"""
import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.core.config import EXPIRY_WARNING_DAYS
from app.core.errors import StoreError
from app.services.account_store import AccountStore
from app.services.notifications import NotificationDispatcher
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    warnings_sent: int = 0
    warnings_failed: int = 0
    accounts_expired: int = 0
    tokens_purged: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def days_left(expires_at: datetime, now: datetime) -> int:
    return max(1, math.ceil((expires_at - now).total_seconds() / 86400))


class ExpirationSweeper:
    def __init__(
        self,
        store: AccountStore,
        notifier: NotificationDispatcher,
        warning_days: int = EXPIRY_WARNING_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.warning_window = timedelta(days=warning_days)
        self.clock = clock

    def run(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.clock()
        report = SweepReport()

        for account in self.store.find_expiring(now, self.warning_window):
            remaining = days_left(account.expires_at, now)
            try:
                sent = self.notifier.send_expiration_warning(
                    account, remaining, audit=self.store.record_notification
                )
                if sent:
                    self.store.mark_warned(account.id, account.expires_at)
            except StoreError:
                # The warning itself may have gone out; keep sweeping the rest
                sent = False
                logger.exception("[Sweeper] Could not mark account %s as warned", account.id)
            if sent:
                report.warnings_sent += 1
            else:
                report.warnings_failed += 1
                logger.warning("[Sweeper] Expiry warning not delivered to account %s", account.id)

        report.accounts_expired = self.store.mark_expired_before(now)
        report.tokens_purged = self.store.purge_revoked_tokens(now)

        logger.info(
            "[Sweeper] Done: %s warnings sent, %s failed, %s accounts expired, %s tokens purged",
            report.warnings_sent,
            report.warnings_failed,
            report.accounts_expired,
            report.tokens_purged,
        )
        return report
