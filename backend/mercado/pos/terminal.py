# Overview: One register session; POS cart, cached catalog and the offline sale queue.

from __future__ import annotations

import logging

from ..models.orders import CHANNEL_POS
from ..services.cart_service import Cart
from ..services.pricing_service import PricingPolicy
from ..validation import ValidationError
from .local_store import LocalStore
from .remote import HttpRemoteStore, RemoteOrderStore, RemoteStoreError
from .sync_queue import OfflineSaleQueue, SyncStatus, build_pos_sale


logger = logging.getLogger(__name__)


class PosTerminal:
    def __init__(
        self,
        store: LocalStore,
        remote: RemoteOrderStore,
        *,
        policy: PricingPolicy | None = None,
        customer_id: str = "pos_user",
        sync_interval: float = 15 * 60,
        on_status=None,
    ):
        self.store = store
        self.remote = remote
        self.customer_id = customer_id
        self.cart = Cart(channel=CHANNEL_POS, policy=policy)
        self.queue = OfflineSaleQueue(store, remote, interval=sync_interval, on_status=on_status)
        self._products: dict[str, dict] = {}

    @classmethod
    def from_config(cls, config, remote: RemoteOrderStore | None = None, **kwargs) -> "PosTerminal":
        store = LocalStore(config["POS_DATABASE_URL"])
        if remote is None:
            remote = HttpRemoteStore(config["ORDER_STORE_URL"], timeout=config["ORDER_STORE_TIMEOUT_SECONDS"])
        return cls(
            store,
            remote,
            policy=PricingPolicy.from_config(config),
            customer_id=config.get("POS_CUSTOMER_ID", "pos_user"),
            sync_interval=config.get("POS_SYNC_INTERVAL_SECONDS", 15 * 60),
            **kwargs,
        )

    # ----------------------------------------------------------------- catalog

    def sync_products(self, fallback: list[dict] | None = None) -> list[dict]:
        """
        Refresh the catalog from the central store and cache it locally.
        Offline: use the local cache, then `fallback` if the cache is empty.
        """
        try:
            products = self.remote.fetch_products()
        except RemoteStoreError as exc:
            products = self.store.get_products()
            source = "local cache"
            if not products and fallback:
                products = list(fallback)
                source = "fallback catalog"
            logger.warning("Catalog fetch failed (%s); using %s", exc, source)
        else:
            self.store.put_products(products)

        self._products = {p["sku"]: p for p in products if p.get("sku")}
        return products

    def lookup(self, sku: str) -> dict | None:
        product = self._products.get(sku)
        if product is None:
            product = self.store.get_product_by_sku(sku)
        return product

    def scan(self, sku: str, quantity: int = 1):
        product = self.lookup(sku)
        if product is None:
            raise ValidationError(f"No product with barcode {sku}")
        return self.cart.add_item(product, quantity)

    # ------------------------------------------------------------------- sales

    def finalize_sale(self, payment_method: str, customer_id: str | None = None) -> dict:
        """Queue the current sale locally and start a new one."""
        sale = build_pos_sale(self.cart, payment_method, customer_id or self.customer_id)
        sale["local_id"] = self.queue.enqueue(sale)
        self.cart.clear()
        return sale

    def close_shift(self) -> dict:
        """
        End-of-shift report over the queued sales, then a sync. On success the
        reported sales are gone from the queue; offline they stay queued.
        """
        report = self.queue.build_shift_report()
        status = self.queue.drain_and_sync(wait=True)
        report["sync_status"] = status
        report["synced"] = status == SyncStatus.SYNCED
        return report

    def start(self) -> str:
        return self.queue.start()

    def shutdown(self) -> None:
        self.queue.stop()
        self.remote.close()
        self.store.close()
