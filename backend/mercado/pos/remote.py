# Overview: Port to the central order store, with HTTP and in-process adapters.

from __future__ import annotations

import httpx
from sqlalchemy.exc import SQLAlchemyError


class RemoteStoreError(Exception):
    """
    The central store could not be reached or rejected the request.

    Routine on a terminal with flaky connectivity: callers downgrade to
    offline mode instead of surfacing it to the operator.
    """
    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


class RemoteOrderStore:
    """What the POS needs from the central store."""

    def fetch_products(self) -> list[dict]:
        raise NotImplementedError

    def create_orders_batch(self, payloads: list[dict]) -> dict:
        raise NotImplementedError

    def close(self) -> None:
        pass


class HttpRemoteStore(RemoteOrderStore):
    """Talks to the Flask HTTP surface (GET /api/products, POST /api/orders/batch)."""

    def __init__(self, base_url: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{method} {path} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            raise RemoteStoreError(
                body.get("error") or f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                details=body.get("details"),
            )
        return body

    def fetch_products(self) -> list[dict]:
        return self._request("GET", "/api/products")["items"]

    def create_orders_batch(self, payloads: list[dict]) -> dict:
        return self._request("POST", "/api/orders/batch", json={"orders": payloads})

    def close(self) -> None:
        self.client.close()


class InProcessRemoteStore(RemoteOrderStore):
    """
    Calls the order services directly inside an app context. Used when the
    register runs in the same process as the store (and by the test suite).
    """

    def __init__(self, app):
        self.app = app

    def fetch_products(self) -> list[dict]:
        from ..services.catalog_service import fetch_products

        with self.app.app_context():
            return fetch_products()["items"]

    def create_orders_batch(self, payloads: list[dict]) -> dict:
        from ..services.inventory_service import InventoryError
        from ..services.order_service import OrderError, create_orders_batch

        with self.app.app_context():
            try:
                return create_orders_batch(payloads)
            except (OrderError, InventoryError) as exc:
                raise RemoteStoreError(str(exc), status_code=400, details=exc.details) from exc
            except ValueError as exc:
                # ValidationError and malformed stored payloads
                raise RemoteStoreError(f"order store rejected the batch: {exc}", status_code=400) from exc
            except SQLAlchemyError as exc:
                raise RemoteStoreError(f"order store unavailable: {exc}") from exc
