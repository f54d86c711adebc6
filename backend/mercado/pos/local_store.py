# Overview: Durable storage on the POS terminal; product cache and the pending-sales queue.

from __future__ import annotations

import json

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
)


metadata = MetaData()

product_cache = Table(
    "product_cache",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("sku", String(64), nullable=True, index=True),
    Column("payload", Text, nullable=False),
)

# Append-only queue; the autoincrement key is the local sale id
sales_queue = Table(
    "sales_queue",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sale_uid", String(64), nullable=False, unique=True),
    Column("payload", Text, nullable=False),
    sqlite_autoincrement=True,
)


class LocalStore:
    """
    Terminal-local SQLite database (SQLAlchemy Core).

    Survives restarts: queued sales stay here until the central store has
    acknowledged them. Every method runs in its own transaction.
    """

    def __init__(self, url: str = "sqlite:///mercado_pos.sqlite3"):
        connect_args = {}
        if url.startswith("sqlite"):
            # The sync scheduler thread shares this engine with the register thread
            connect_args["check_same_thread"] = False
        self.engine = create_engine(url, connect_args=connect_args)
        metadata.create_all(self.engine)

    # ---------------------------------------------------------------- products

    def put_products(self, products: list[dict]) -> None:
        """Replace the whole cache with a fresh catalog listing."""
        with self.engine.begin() as conn:
            conn.execute(delete(product_cache))
            if products:
                conn.execute(
                    insert(product_cache),
                    [
                        {"id": int(p["id"]), "sku": p.get("sku"), "payload": json.dumps(p)}
                        for p in products
                    ],
                )

    def get_products(self) -> list[dict]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(product_cache.c.payload).order_by(product_cache.c.id)).all()
        return [json.loads(r.payload) for r in rows]

    def get_product_by_sku(self, sku: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(product_cache.c.payload).where(product_cache.c.sku == sku)
            ).first()
        return json.loads(row.payload) if row else None

    def clear_products(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(product_cache))

    # ------------------------------------------------------------------- sales

    def append_sale(self, sale: dict) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(sales_queue).values(sale_uid=sale["sale_uid"], payload=json.dumps(sale))
            )
            return int(result.inserted_primary_key[0])

    def list_sales(self) -> list[tuple[int, dict]]:
        """(local id, sale) pairs in queue order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(sales_queue.c.id, sales_queue.c.payload).order_by(sales_queue.c.id)
            ).all()
        return [(r.id, json.loads(r.payload)) for r in rows]

    def delete_sales(self, sale_ids) -> int:
        ids = list(sale_ids)
        if not ids:
            return 0
        with self.engine.begin() as conn:
            result = conn.execute(delete(sales_queue).where(sales_queue.c.id.in_(ids)))
            return result.rowcount

    def clear_sales(self) -> int:
        with self.engine.begin() as conn:
            return conn.execute(delete(sales_queue)).rowcount

    def close(self) -> None:
        self.engine.dispose()
