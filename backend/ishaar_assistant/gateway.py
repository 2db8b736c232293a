"""Tenant-scoped data gateway over the Supabase tables.

The assistant only needs two operations on the accounting store:

  • ``list_recent`` — newest-first page of one table (clients, invoices,
    debts, tasks), filtered to the caller's tenant when one is known.
  • ``insert`` — create one row and return it, reporting failures as a
    value instead of raising so the action executor can surface them.

The Supabase Python SDK is synchronous, so every call runs in a worker
thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

CLIENTS_TABLE = "clients"
INVOICES_TABLE = "invoices"
INVOICE_ITEMS_TABLE = "invoice_items"
DEBTS_TABLE = "debts"
TASKS_TABLE = "tasks"

# invoice_items rows belong to their invoice and carry no tenant column
_UNSCOPED_TABLES = {INVOICE_ITEMS_TABLE}


class TenantScope(BaseModel):
    """Isolation boundary for one request."""

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None


class WriteResult(BaseModel):
    """Outcome of a single insert: the created row or the error text."""

    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _error_message(exc: Exception) -> str:
    """Best human-readable text for a PostgREST / transport error."""
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc) or type(exc).__name__


class DataGateway:
    """Reads and writes accounting records for one tenant."""

    def __init__(self, client: Any, scope: TenantScope | None = None) -> None:
        self.client = client
        self.scope = scope or TenantScope()

    # ── reads ──────────────────────────────────────────────────────

    def _list_recent_sync(self, table: str, limit: int) -> list[dict[str, Any]]:
        query = self.client.table(table).select("*")
        if self.scope.tenant_id and table not in _UNSCOPED_TABLES:
            query = query.eq("tenant_id", self.scope.tenant_id)
        resp = query.order("created_at", desc=True).limit(limit).execute()
        return list(resp.data or [])

    async def list_recent(self, table: str, limit: int) -> list[dict[str, Any]]:
        """Return up to *limit* rows of *table*, newest first.

        Raises on failure; callers decide how to degrade.
        """
        rows = await asyncio.to_thread(self._list_recent_sync, table, limit)
        logger.debug(
            "gateway.list_recent | table=%s | tenant=%s | rows=%d",
            table,
            self.scope.tenant_id,
            len(rows),
        )
        return rows

    # ── writes ─────────────────────────────────────────────────────

    def _stamp(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stamped = dict(row)
        if table not in _UNSCOPED_TABLES:
            if self.scope.tenant_id:
                stamped.setdefault("tenant_id", self.scope.tenant_id)
            if self.scope.user_id:
                stamped.setdefault("created_by", self.scope.user_id)
        return stamped

    def _insert_sync(self, table: str, row: dict[str, Any]) -> dict[str, Any] | None:
        resp = self.client.table(table).insert(row).execute()
        data = resp.data
        if isinstance(data, list):
            return data[0] if data else None
        return data

    async def insert(self, table: str, row: dict[str, Any]) -> WriteResult:
        """Insert *row* into *table*; failures come back in ``WriteResult.error``."""
        payload = self._stamp(table, row)
        try:
            data = await asyncio.to_thread(self._insert_sync, table, payload)
        except Exception as exc:
            logger.exception(
                "gateway.insert failed | table=%s | tenant=%s",
                table,
                self.scope.tenant_id,
            )
            return WriteResult(error=_error_message(exc))

        logger.info(
            "gateway.insert | table=%s | tenant=%s | id=%s",
            table,
            self.scope.tenant_id,
            (data or {}).get("id"),
        )
        return WriteResult(data=data)
