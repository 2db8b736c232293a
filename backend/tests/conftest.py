"""Pytest configuration and shared fakes."""

import os
from types import SimpleNamespace
from typing import Any

import pytest

# Keep real credentials out of the test run before any app module is imported
os.environ["GROQ_API_KEY"] = ""
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = ""
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-enough-length-32b"

from ishaar_assistant.gateway import DataGateway, TenantScope  # noqa: E402
from ishaar_assistant.llm_client import CompletionClient  # noqa: E402

TENANT_ID = "77777777-7777-7777-7777-777777777777"
USER_ID = "11111111-1111-1111-1111-111111111111"


class FakeAPIError(Exception):
    """Shape of postgrest's APIError: the text lives on ``.message``."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table = table
        self.filters: list[tuple[str, Any]] = []
        self.order_by: tuple[str, bool] | None = None
        self.row_limit: int | None = None
        self.payload: dict[str, Any] | None = None

    def select(self, *_columns: str) -> "FakeQuery":
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.row_limit = n
        return self

    def insert(self, row: dict[str, Any]) -> "FakeQuery":
        self.payload = row
        return self

    def execute(self) -> SimpleNamespace:
        self.db.queries.append(self)
        if self.payload is not None:
            if self.table in self.db.fail_writes:
                raise FakeAPIError(self.db.fail_writes[self.table])
            created = {"id": f"{self.table}-{len(self.db.inserted) + 1}", **self.payload}
            self.db.inserted.append((self.table, created))
            return SimpleNamespace(data=[created])

        if self.table in self.db.fail_reads:
            raise FakeAPIError(f"relation {self.table} unavailable")
        rows = list(self.db.tables.get(self.table, []))
        for column, value in self.filters:
            rows = [r for r in rows if r.get(column) == value]
        if self.order_by:
            column, desc = self.order_by
            rows.sort(key=lambda r: str(r.get(column, "")), reverse=desc)
        if self.row_limit is not None:
            rows = rows[: self.row_limit]
        return SimpleNamespace(data=rows)


class FakeRPC:
    def __init__(self, data: Any) -> None:
        self.data = data

    def execute(self) -> SimpleNamespace:
        return SimpleNamespace(data=self.data)


class FakeSupabase:
    """In-memory stand-in for the subset of the Supabase client we use."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.tables = tables or {}
        self.fail_reads: set[str] = set()
        self.fail_writes: dict[str, str] = {}
        self.inserted: list[tuple[str, dict[str, Any]]] = []
        self.queries: list[FakeQuery] = []
        self.tenant_id: str | None = TENANT_ID

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRPC:
        assert name == "get_user_tenant_id"
        return FakeRPC(self.tenant_id)

    def inserted_into(self, table: str) -> list[dict[str, Any]]:
        return [row for t, row in self.inserted if t == table]


class FakeLLM:
    """Completion client double returning a canned reply."""

    build_messages = staticmethod(CompletionClient.build_messages)

    def __init__(
        self,
        reply: str = "",
        model: str = "llama-3.3-70b-versatile",
        success: bool = True,
        error: str | None = None,
    ) -> None:
        self.reply = reply
        self.model = model
        self.success = success
        self.error = error
        self.calls: list[list[dict[str, str]]] = []

    async def ainvoke(self, messages: list[dict[str, str]]) -> SimpleNamespace:
        self.calls.append(messages)
        meta = {
            "model": self.model,
            "usage": {"total_tokens": 42} if self.success else None,
            "latency_ms": 1,
            "status_code": 200 if self.success else 503,
            "success": self.success,
            "fallback_used": False,
            "error": self.error,
        }
        return SimpleNamespace(content=self.reply if self.success else "", meta=meta)

    @property
    def system_prompt(self) -> str:
        return self.calls[-1][0]["content"]


def action_block(payload: str) -> str:
    return f"```action\n{payload}\n```"


@pytest.fixture
def clients_rows():
    return [
        {
            "id": "c-2",
            "name": "أحمد محمد",
            "phone": "0500000001",
            "tenant_id": TENANT_ID,
            "created_at": "2026-10-10T09:00:00",
        },
        {
            "id": "c-1",
            "name": "شركة النور للتجارة",
            "phone": None,
            "tenant_id": TENANT_ID,
            "created_at": "2026-09-01T09:00:00",
        },
    ]


@pytest.fixture
def invoices_rows():
    return [
        {
            "id": "i-3",
            "invoice_number": "INV-202610-100003",
            "client_name": "أحمد محمد",
            "total_amount": 1150,
            "status": "pending",
            "tenant_id": TENANT_ID,
            "created_at": "2026-10-12T09:00:00",
        },
        {
            "id": "i-2",
            "invoice_number": "INV-202610-100002",
            "client_name": "شركة النور للتجارة",
            "total_amount": 5750,
            "status": "paid",
            "tenant_id": TENANT_ID,
            "created_at": "2026-10-05T09:00:00",
        },
        {
            "id": "i-1",
            "invoice_number": "INV-202609-100001",
            "client_name": "شركة النور للتجارة",
            "total_amount": "2300.50",
            "status": "cancelled",
            "tenant_id": TENANT_ID,
            "created_at": "2026-09-20T09:00:00",
        },
    ]


@pytest.fixture
def debts_rows():
    return [
        {
            "id": "d-2",
            "client_name": "أحمد محمد",
            "service_type": "إقرار ضريبي",
            "amount": 1000,
            "paid_amount": 250,
            "status": "pending",
            "expected_payment_date": "2026-10-01",
            "tenant_id": TENANT_ID,
            "created_at": "2026-09-01T09:00:00",
        },
        {
            "id": "d-1",
            "client_name": "شركة النور للتجارة",
            "service_type": "مراجعة حسابات",
            "amount": 3000,
            "paid_amount": 3000,
            "status": "paid",
            "expected_payment_date": "2026-08-01",
            "tenant_id": TENANT_ID,
            "created_at": "2026-07-01T09:00:00",
        },
    ]


@pytest.fixture
def tasks_rows():
    return [
        {
            "id": "t-2",
            "title": "تجديد السجل التجاري",
            "client_name": "أحمد محمد",
            "status": "in_progress",
            "service_amount": 500,
            "government_fees": 200,
            "tenant_id": TENANT_ID,
            "created_at": "2026-10-11T09:00:00",
        },
        {
            "id": "t-1",
            "title": "إصدار رخصة بلدية",
            "client_name": "شركة النور للتجارة",
            "status": "completed",
            "service_amount": None,
            "government_fees": "150",
            "tenant_id": TENANT_ID,
            "created_at": "2026-09-11T09:00:00",
        },
    ]


@pytest.fixture
def fake_db(clients_rows, invoices_rows, debts_rows, tasks_rows):
    return FakeSupabase(
        {
            "clients": clients_rows,
            "invoices": invoices_rows,
            "debts": debts_rows,
            "tasks": tasks_rows,
        }
    )


@pytest.fixture
def gateway(fake_db):
    return DataGateway(fake_db, TenantScope(tenant_id=TENANT_ID, user_id=USER_ID))
