"""
PostgreSQL Invoice Repository

Stores invoice records in a single table; the embedded vehicle snapshot
and the line items are JSONB columns. psycopg2 is blocking, so every call
runs in a worker thread via asyncio.to_thread.

Expected table (name from INVOICE_TABLE):

    id             uuid primary key default gen_random_uuid()
    customer       text not null
    vehicle        jsonb
    items          jsonb not null default '[]'
    subtotal, discount, tax, amount   numeric(14, 2)
    status         text not null
    payment_method text
    technician, supervisor, notes, terms   text
    date           timestamptz not null default now()
"""

import asyncio
import json
import logging
from functools import partial
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json

from invoice_composer.models import PersistedInvoice
from invoice_composer.services.collaborators import InvoiceRepository
from invoice_composer.utils.config import Settings, settings as default_settings
from invoice_composer.utils.database import Database, get_db
from invoice_composer.utils.errors import NetworkFailure, PersistenceConflict

logger = logging.getLogger(__name__)

COLUMNS = (
    "customer", "vehicle", "items", "subtotal", "discount", "tax", "amount",
    "status", "payment_method", "technician", "supervisor", "notes", "terms", "date",
)

# Wire names that differ from column names
WIRE_TO_COLUMN = {"paymentMethod": "payment_method"}

JSONB_COLUMNS = {"vehicle", "items"}

_dumps = partial(json.dumps, default=str)


def _row_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Map a wire payload onto column values, wrapping JSONB columns"""
    values = {}
    for key, value in payload.items():
        column = WIRE_TO_COLUMN.get(key, key)
        if column not in COLUMNS:
            continue
        values[column] = Json(value, dumps=_dumps) if column in JSONB_COLUMNS and value is not None else value
    return values


def _to_record(row: Dict[str, Any]) -> PersistedInvoice:
    data = dict(row)
    data["id"] = str(data["id"])
    data["items"] = data.get("items") or []
    return PersistedInvoice.model_validate(data)


class PostgresInvoiceRepository(InvoiceRepository):
    """InvoiceRepository backed by a PostgreSQL table"""

    def __init__(self, database: Optional[Database] = None, config: Optional[Settings] = None):
        self.db = database or get_db()
        self.config = config or default_settings
        self.table = sql.Identifier(*self.config.INVOICE_TABLE.split("."))

    # ========================================================================
    # Blocking helpers
    # ========================================================================

    def _insert(self, payload: Dict[str, Any]) -> PersistedInvoice:
        values = _row_values(payload)
        columns = list(values)
        query = sql.SQL("INSERT INTO {table} ({columns}) VALUES ({placeholders}) RETURNING *").format(
            table=self.table,
            columns=sql.SQL(", ").join(map(sql.Identifier, columns)),
            placeholders=sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        )
        row = self.db.execute_query(query, tuple(values[c] for c in columns), fetch_one=True)
        return _to_record(row)

    def _update(self, invoice_id: str, payload: Dict[str, Any]) -> PersistedInvoice:
        values = _row_values(payload)
        columns = list(values)
        query = sql.SQL("UPDATE {table} SET {assignments} WHERE id = %s RETURNING *").format(
            table=self.table,
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in columns
            ),
        )
        row = self.db.execute_query(query, tuple(values[c] for c in columns) + (invoice_id,), fetch_one=True)
        if row is None:
            raise PersistenceConflict(f"Invoice {invoice_id} no longer exists")
        return _to_record(row)

    def _get(self, invoice_id: str) -> Optional[PersistedInvoice]:
        query = sql.SQL("SELECT * FROM {table} WHERE id = %s").format(table=self.table)
        row = self.db.execute_query(query, (invoice_id,), fetch_one=True)
        return _to_record(row) if row else None

    def _list(self) -> List[PersistedInvoice]:
        query = sql.SQL("SELECT * FROM {table} ORDER BY date DESC").format(table=self.table)
        rows = self.db.execute_query(query)
        return [_to_record(row) for row in rows or []]

    async def _run(self, action: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except psycopg2.Error as e:
            logger.error(f"Failed to {action}: {e}")
            raise NetworkFailure(f"Failed to {action}: {e}") from e

    # ========================================================================
    # InvoiceRepository
    # ========================================================================

    async def create(self, payload: Dict[str, Any]) -> PersistedInvoice:
        invoice = await self._run("create invoice", self._insert, payload)
        logger.info(f"Created invoice {invoice.id} ({invoice.status})")
        return invoice

    async def update(self, invoice_id: str, payload: Dict[str, Any]) -> PersistedInvoice:
        invoice = await self._run(f"update invoice {invoice_id}", self._update, str(invoice_id), payload)
        logger.info(f"Updated invoice {invoice.id} ({invoice.status})")
        return invoice

    async def get_by_id(self, invoice_id: str) -> Optional[PersistedInvoice]:
        return await self._run(f"load invoice {invoice_id}", self._get, str(invoice_id))

    async def list(self) -> List[PersistedInvoice]:
        return await self._run("list invoices", self._list)
