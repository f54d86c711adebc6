"""
Offline sale queue for a POS terminal.

WHY: The register must keep selling when the network is down. Sales are
written to the terminal's local store first and pushed to the central store
in batches later.

GUARANTEES:
- enqueue() only writes locally; it never waits on the network.
- At most one sync is in flight. Operator-triggered syncs wait for it;
  periodic ticks that find a sync running are skipped.
- A failed sync leaves the queue exactly as it was (status "offline").
- A successful sync deletes exactly the sales it submitted, so sales
  enqueued while the request was in flight stay queued.
- Every sale carries a sale_uid; the central store skips uids it already
  has, so resubmitting after a lost acknowledgement cannot duplicate orders.
"""
from __future__ import annotations

import logging
import threading
import uuid
from collections import defaultdict

from ..models.orders import CHANNEL_POS, PAYMENT_METHODS
from ..services.cart_service import Cart
from ..validation import ValidationError
from mercado.time_utils import to_utc_z, utcnow
from .local_store import LocalStore
from .remote import RemoteOrderStore, RemoteStoreError
from .scheduler import PeriodicSync


logger = logging.getLogger(__name__)


class SyncStatus:
    SYNCED = "synced"
    SYNCING = "syncing"
    OFFLINE = "offline"


DEFAULT_SYNC_INTERVAL_SECONDS = 15 * 60


def build_pos_sale(cart: Cart, payment_method: str, customer_id: str = "pos_user") -> dict:
    """Freeze a POS cart into a queueable sale (fees are always zero at the register)."""
    if cart.channel != CHANNEL_POS:
        raise ValidationError("Only POS carts can be queued as sales")
    if cart.is_empty():
        raise ValidationError("Cannot finalize an empty sale")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    sale = cart.snapshot()
    sale.update({
        "sale_uid": str(uuid.uuid4()),
        "user_id": customer_id,
        "payment_method": payment_method,
        "queued_at": to_utc_z(utcnow()),
    })
    return sale


class OfflineSaleQueue:
    def __init__(
        self,
        store: LocalStore,
        remote: RemoteOrderStore,
        *,
        interval: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        on_status=None,
    ):
        self.store = store
        self.remote = remote
        self.interval = interval
        self.on_status = on_status
        self.status = SyncStatus.SYNCED
        self._sync_lock = threading.Lock()
        self._scheduler = PeriodicSync(lambda: self.drain_and_sync(wait=False))

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        if self.on_status is not None:
            self.on_status(status)

    # ------------------------------------------------------------------ queue

    def enqueue(self, sale: dict) -> int:
        if not sale.get("items"):
            raise ValidationError("Cannot queue a sale with no items")
        if not sale.get("sale_uid"):
            raise ValidationError("sale_uid is required")
        local_id = self.store.append_sale(sale)
        logger.info("Queued POS sale %s (local id %s)", sale["sale_uid"], local_id)
        return local_id

    def get_queue_snapshot(self) -> list[dict]:
        return [{"local_id": local_id, **sale} for local_id, sale in self.store.list_sales()]

    def clear_after_manual_reconciliation(self, sale_ids=None) -> int:
        """
        Drop queued sales after an operator has reconciled them by hand.
        Only the ids the reviewed report listed are removed; None clears all.
        """
        if sale_ids is None:
            removed = self.store.clear_sales()
        else:
            removed = self.store.delete_sales(sale_ids)
        logger.warning("Manually cleared %d queued POS sales", removed)
        return removed

    # ------------------------------------------------------------------- sync

    def drain_and_sync(self, wait: bool = True) -> str:
        if not self._sync_lock.acquire(blocking=wait):
            return SyncStatus.SYNCING
        try:
            pending = self.store.list_sales()
            if not pending:
                self._set_status(SyncStatus.SYNCED)
                return self.status

            self._set_status(SyncStatus.SYNCING)
            logger.info("Syncing %d queued POS sales", len(pending))
            try:
                result = self.remote.create_orders_batch([sale for _, sale in pending])
            except RemoteStoreError as exc:
                logger.warning("POS sync failed, %d sales kept offline: %s", len(pending), exc)
                self._set_status(SyncStatus.OFFLINE)
                return self.status
            except Exception:
                # Never fatal to the register; the sales stay queued
                logger.exception("POS sync crashed, %d sales kept offline", len(pending))
                self._set_status(SyncStatus.OFFLINE)
                return self.status

            self.store.delete_sales([local_id for local_id, _ in pending])
            logger.info(
                "POS sync complete: %s created, %d already stored",
                result.get("created"), len(result.get("skipped") or []),
            )
            self._set_status(SyncStatus.SYNCED)
            return self.status
        finally:
            self._sync_lock.release()

    def start(self, interval: float | None = None) -> str:
        """Sync once now, then every `interval` seconds."""
        status = self.drain_and_sync(wait=True)
        self._scheduler.start(interval or self.interval)
        return status

    def stop(self) -> None:
        self._scheduler.stop()

    @property
    def scheduler_running(self) -> bool:
        return self._scheduler.running

    # ---------------------------------------------------------------- reports

    def build_shift_report(self, snapshot: list[dict] | None = None) -> dict:
        if snapshot is None:
            snapshot = self.get_queue_snapshot()

        by_method = defaultdict(int)
        total = 0
        for sale in snapshot:
            amount = int(sale.get("total_cents") or 0)
            total += amount
            by_method[sale.get("payment_method")] += amount

        return {
            "sale_ids": [s["local_id"] for s in snapshot if "local_id" in s],
            "sales_count": len(snapshot),
            "total_cents": total,
            "by_payment_method": {m: by_method.get(m, 0) for m in PAYMENT_METHODS},
            "generated_at": to_utc_z(utcnow()),
        }
