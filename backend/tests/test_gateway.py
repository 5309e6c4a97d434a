"""Persistence gateway tests (SQLite via aiosqlite)."""

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select, text

from app.config import DatabaseConfig
from app.middleware.exceptions import ConfigurationError, PersistenceUnavailableError
from app.models.audit_log import AuditLog
from app.models.document import DocumentRecord
from app.schemas.catalog import CatalogItemIn
from app.schemas.client import ClientIn, ClientStatus, ProviderIn
from app.schemas.document import (
    Discount,
    Document,
    DocumentStatus,
    DocumentType,
    LineItem,
    SyncState,
)
from app.services.gateway import PersistenceGateway, is_unreachable


def _invoice(account_id: str, doc_id: str = "FAC-0001", **kw) -> Document:
    fields = dict(
        id=doc_id,
        user_id=account_id,
        type=DocumentType.INVOICE,
        client_name="Acme Corp",
        items=[LineItem(description="Design", quantity=2, price=100, tax_rate=7)],
        total=214.0,
        status=DocumentStatus.CREATED,
        date=datetime(2026, 1, 10, tzinfo=timezone.utc),
    )
    fields.update(kw)
    return Document(**fields)


def _expense(account_id: str, doc_id: str = "EXP-0001", **kw) -> Document:
    fields = dict(
        id=doc_id,
        user_id=account_id,
        type=DocumentType.EXPENSE,
        client_name="Cloud Hosting Inc",
        items=[LineItem(description="Servers", quantity=1, price=80)],
        total=80.0,
        amount_paid=80.0,
        status=DocumentStatus.PAID,
        date=datetime(2026, 2, 1, tzinfo=timezone.utc),
        category="Infrastructure",
    )
    fields.update(kw)
    return Document(**fields)


async def _count(gateway: PersistenceGateway, stmt) -> int:
    async with gateway.engine.connect() as conn:
        return (await conn.execute(stmt)).scalar_one()


@pytest.mark.unit
class TestInit:

    def test_missing_url(self):
        with pytest.raises(ConfigurationError) as exc_info:
            PersistenceGateway.init(DatabaseConfig(url=""))
        assert exc_info.value.error_code == "DATABASE_NOT_CONFIGURED"

    def test_unsupported_scheme(self):
        with pytest.raises(ConfigurationError):
            PersistenceGateway.init(DatabaseConfig(url="mysql+aiomysql://u:p@db/bills"))

    def test_connection_errors_are_unreachable(self):
        assert is_unreachable(ConnectionRefusedError())
        assert is_unreachable(TimeoutError())
        assert not is_unreachable(ValueError())


@pytest.mark.integration
@pytest.mark.asyncio
class TestDocuments:

    async def test_upsert_is_idempotent(self, gateway, account_id):
        first = _invoice(account_id)
        assert (await gateway.upsert(first)).ok
        second = first.model_copy(update={"notes": "Net 30", "status": DocumentStatus.ACCEPTED})
        assert (await gateway.upsert(second)).ok

        rows = await _count(
            gateway,
            select(func.count()).select_from(DocumentRecord).where(DocumentRecord.id == "FAC-0001"),
        )
        assert rows == 1

        stored = await gateway.fetch_one(account_id, "FAC-0001")
        assert stored.notes == "Net 30"
        assert stored.status == DocumentStatus.ACCEPTED

    async def test_fetch_all_merges_tables_newest_first(self, gateway, account_id):
        await gateway.upsert(_invoice(account_id))
        await gateway.upsert(_expense(account_id))

        documents = await gateway.fetch_all(account_id)

        assert [d.id for d in documents] == ["EXP-0001", "FAC-0001"]
        assert [d.type for d in documents] == [DocumentType.EXPENSE, DocumentType.INVOICE]
        assert documents[0].category == "Infrastructure"
        assert documents[0].client_name == "Cloud Hosting Inc"

    async def test_fetch_all_is_scoped_to_account(self, gateway, account_id):
        await gateway.upsert(_invoice(account_id))
        assert await gateway.fetch_all("acct-someone-else") == []

    async def test_snapshot_round_trip(self, gateway, account_id):
        doc = _invoice(
            account_id,
            discount=Discount(kind="AMOUNT", value=14),
            total=200.0,
            extension_data={"po_number": "PO-881"},
        )
        await gateway.upsert(doc)

        stored = await gateway.fetch_one(account_id, doc.id)
        assert stored.discount == doc.discount
        assert stored.items[0].tax_rate == 7
        assert stored.extension_data == {"po_number": "PO-881"}
        assert stored.sync_state == SyncState.SYNCED

    async def test_replaces_draft_row(self, gateway, account_id):
        await gateway.upsert(_invoice(account_id, "DRAFT-1A2B3C4D", status=DocumentStatus.DRAFT))
        await gateway.upsert(_invoice(account_id, "FAC-0001"), replaces="DRAFT-1A2B3C4D")

        assert [d.id for d in await gateway.fetch_all(account_id)] == ["FAC-0001"]

    async def test_delete_falls_back_to_expenses(self, gateway, account_id):
        await gateway.upsert(_invoice(account_id))
        await gateway.upsert(_expense(account_id))

        assert (await gateway.delete("EXP-0001", account_id)).ok
        assert (await gateway.delete("FAC-0001", account_id)).ok
        assert await gateway.fetch_all(account_id) == []

    async def test_delete_unknown(self, gateway, account_id):
        result = await gateway.delete("FAC-0999", account_id)
        assert not result.ok
        assert not result.found
        assert result.reachable

    async def test_same_number_in_two_accounts(self, gateway, account_id, other_account_id):
        await gateway.upsert(_invoice(account_id))
        await gateway.upsert(_invoice(other_account_id, client_name="Other Co", total=50.0, items=[]))
        await gateway.upsert(_expense(account_id))
        await gateway.upsert(_expense(other_account_id, client_name="Other Supplier"))

        mine = await gateway.fetch_one(account_id, "FAC-0001")
        theirs = await gateway.fetch_one(other_account_id, "FAC-0001")
        assert (mine.client_name, mine.total) == ("Acme Corp", 214.0)
        assert (theirs.client_name, theirs.total) == ("Other Co", 50.0)
        assert (await gateway.fetch_one(account_id, "EXP-0001")).client_name == "Cloud Hosting Inc"
        assert len(await gateway.fetch_all(account_id)) == 2

    async def test_find_issued_by_draft_id(self, gateway, account_id, other_account_id):
        issued = _invoice(account_id, extension_data={"draft_id": "DRAFT-1A2B3C4D"})
        await gateway.upsert(issued)

        assert (await gateway.find_issued(account_id, "DRAFT-1A2B3C4D")).id == "FAC-0001"
        assert await gateway.find_issued(other_account_id, "DRAFT-1A2B3C4D") is None
        assert await gateway.find_issued(account_id, "DRAFT-FFFFFFFF") is None

    async def test_delete_other_accounts_document(self, gateway, account_id):
        await gateway.upsert(_invoice(account_id))
        assert not (await gateway.delete("FAC-0001", "acct-someone-else")).ok
        assert await gateway.fetch_one(account_id, "FAC-0001") is not None

    async def test_writes_are_audited(self, gateway, account_id):
        await gateway.upsert(_invoice(account_id, client_email="ap@acme.test"))
        await gateway.delete("FAC-0001", account_id)

        async with gateway.engine.connect() as conn:
            rows = (await conn.execute(
                select(AuditLog.action, AuditLog.entity_type, AuditLog.details)
                .order_by(AuditLog.created_at)
            )).all()

        assert [r.action for r in rows] == ["document_saved", "document_deleted"]
        assert rows[0].details["total"] == 214.0
        assert rows[1].entity_type == "Invoice"
        assert rows[1].details["type"] == "Invoice"
        assert rows[1].details["total"] == 214.0
        assert rows[1].details["status"] == "Created"
        assert "ap@acme.test" not in json.dumps(rows[0].details)

    async def test_reads_legacy_rows(self, gateway, account_id):
        legacy = {
            "clientName": "Legacy SA",
            "clientEmail": "old@legacy.test",
            "items": [{"id": "1", "description": "Consulting", "quantity": 1, "price": 100, "tax": 7}],
        }
        async with gateway.engine.begin() as conn:
            await conn.execute(
                text(
                    "INSERT INTO invoices (id, user_id, client_name, total, status, date, type, data) "
                    "VALUES (:id, :user_id, :client_name, :total, :status, :date, :type, :data)"
                ),
                {
                    "id": "FAC-0042", "user_id": account_id, "client_name": "Legacy SA",
                    "total": 107.0, "status": "PendingSync", "date": "2025-03-01T00:00:00",
                    "type": "Invoice", "data": json.dumps(legacy),
                },
            )

        doc = await gateway.fetch_one(account_id, "FAC-0042")

        assert doc.status == DocumentStatus.CREATED
        assert doc.sync_state == SyncState.PENDING_SYNC
        assert doc.client_email == "old@legacy.test"
        assert doc.items[0].tax_rate == 7
        assert doc.totals_consistent
        assert doc.date.tzinfo is not None

    async def test_repairs_missing_tables_and_retries(self, bare_gateway, account_id):
        result = await bare_gateway.upsert(_invoice(account_id))

        assert result.ok
        assert [d.id for d in await bare_gateway.fetch_all(account_id)] == ["FAC-0001"]

    async def test_repairs_missing_columns_and_retries(self, bare_gateway, account_id):
        async with bare_gateway.engine.begin() as conn:
            await conn.execute(text(
                "CREATE TABLE invoices (id TEXT PRIMARY KEY, user_id TEXT NOT NULL, "
                "client_name TEXT, total FLOAT, status VARCHAR(30), date TEXT, type VARCHAR(20))"
            ))

        result = await bare_gateway.upsert(_invoice(account_id))

        assert result.ok
        assert (await bare_gateway.fetch_one(account_id, "FAC-0001")).client_name == "Acme Corp"


@pytest.mark.integration
@pytest.mark.asyncio
class TestUnreachable:

    async def test_upsert_reports_unreachable(self, offline_gateway, account_id):
        result = await offline_gateway.upsert(_invoice(account_id))
        assert not result.ok
        assert not result.reachable

    async def test_fetch_all_returns_none(self, offline_gateway, account_id):
        assert await offline_gateway.fetch_all(account_id) is None

    async def test_fetch_one_raises(self, offline_gateway, account_id):
        with pytest.raises(PersistenceUnavailableError):
            await offline_gateway.fetch_one(account_id, "FAC-0001")

    async def test_reserve_returns_none(self, offline_gateway, account_id):
        assert await offline_gateway.reserve_number(account_id, DocumentType.INVOICE) is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestSequences:

    async def test_reserve_increments(self, gateway, account_id):
        assert await gateway.reserve_number(account_id, DocumentType.INVOICE) == ("FAC", 1)
        assert await gateway.reserve_number(account_id, DocumentType.INVOICE) == ("FAC", 2)
        assert await gateway.reserve_number(account_id, DocumentType.QUOTE) == ("COT", 1)

    async def test_configured_sequence(self, gateway, account_id):
        assert (await gateway.configure_sequence(account_id, DocumentType.INVOICE, "INV", 120)).ok
        assert await gateway.reserve_number(account_id, DocumentType.INVOICE) == ("INV", 120)

    async def test_advance_moves_past_used_number(self, gateway, account_id):
        await gateway.reserve_number(account_id, DocumentType.INVOICE)
        await gateway.advance_sequence(account_id, DocumentType.INVOICE, 5)
        assert await gateway.reserve_number(account_id, DocumentType.INVOICE) == ("FAC", 6)

    async def test_advance_never_moves_backwards(self, gateway, account_id):
        await gateway.configure_sequence(account_id, DocumentType.INVOICE, "FAC", 10)
        await gateway.advance_sequence(account_id, DocumentType.INVOICE, 3)
        assert await gateway.reserve_number(account_id, DocumentType.INVOICE) == ("FAC", 10)


@pytest.mark.integration
@pytest.mark.asyncio
class TestClients:

    async def test_prospect_promoted_to_client(self, gateway, account_id):
        await gateway.save_client(account_id, ClientIn(name="Acme Corp", status=ClientStatus.PROSPECT))
        await gateway.save_client(account_id, ClientIn(name="Acme Corp", status=ClientStatus.CLIENT))

        clients = await gateway.fetch_clients(account_id)
        assert [(c.name, c.status) for c in clients] == [("Acme Corp", ClientStatus.CLIENT)]

    async def test_client_never_downgraded(self, gateway, account_id):
        await gateway.save_client(account_id, ClientIn(
            name="Acme Corp", email="ap@acme.test", status=ClientStatus.CLIENT,
        ))
        await gateway.save_client(account_id, ClientIn(
            name="Acme Corp", phone="+507 6000-0000", status=ClientStatus.PROSPECT,
        ))

        (client,) = await gateway.fetch_clients(account_id)
        assert client.status == ClientStatus.CLIENT
        assert client.email == "ap@acme.test"
        assert client.phone == "+507 6000-0000"

    async def test_empty_fields_do_not_erase(self, gateway, account_id):
        await gateway.save_client(account_id, ClientIn(
            name="Acme Corp", tax_id="8-123-456", tags=["vip", "retainer"], status=ClientStatus.CLIENT,
        ))
        await gateway.save_client(account_id, ClientIn(name="Acme Corp", status=ClientStatus.CLIENT))

        (client,) = await gateway.fetch_clients(account_id)
        assert client.tax_id == "8-123-456"
        assert client.tags == ["vip", "retainer"]

    async def test_client_audit_is_redacted(self, gateway, account_id):
        await gateway.save_client(account_id, ClientIn(
            name="Acme Corp", email="ap@acme.test", status=ClientStatus.CLIENT,
        ))

        async with gateway.engine.connect() as conn:
            (details,) = (await conn.execute(
                select(AuditLog.details).where(AuditLog.action == "client_saved")
            )).scalars().all()

        assert details["status"] == "CLIENT"
        assert details["email"] == "[redacted]"

    async def test_client_ids_scoped_to_account(self, gateway, account_id, other_account_id):
        await gateway.save_client(account_id, ClientIn(
            id="cli_shared", name="Acme Corp", status=ClientStatus.CLIENT,
        ))
        await gateway.save_client(other_account_id, ClientIn(
            id="cli_shared", name="Globex", status=ClientStatus.PROSPECT,
        ))

        assert [c.name for c in await gateway.fetch_clients(account_id)] == ["Acme Corp"]
        assert [c.name for c in await gateway.fetch_clients(other_account_id)] == ["Globex"]


@pytest.mark.integration
@pytest.mark.asyncio
class TestProviders:

    async def test_save_and_merge(self, gateway, account_id):
        await gateway.save_provider(account_id, ProviderIn(
            name="Cloud Hosting Inc", tax_id="155-22-9", category="Infrastructure",
        ))
        await gateway.save_provider(account_id, ProviderIn(
            name="Cloud Hosting Inc", email="billing@cloud.test",
        ))

        (provider,) = await gateway.fetch_providers(account_id)
        assert provider.tax_id == "155-22-9"
        assert provider.email == "billing@cloud.test"
        assert provider.category == "Infrastructure"

    async def test_scoped_to_account(self, gateway, account_id, other_account_id):
        await gateway.save_provider(account_id, ProviderIn(id="prov_shared", name="Papeleria Central"))
        await gateway.save_provider(other_account_id, ProviderIn(id="prov_shared", name="Ferreteria Norte"))

        assert [p.name for p in await gateway.fetch_providers(account_id)] == ["Papeleria Central"]
        assert [p.name for p in await gateway.fetch_providers(other_account_id)] == ["Ferreteria Norte"]

    async def test_offline(self, offline_gateway, account_id):
        result = await offline_gateway.save_provider(account_id, ProviderIn(name="Cloud Hosting Inc"))
        assert not result.reachable
        assert await offline_gateway.fetch_providers(account_id) is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestCatalog:

    async def test_save_update_delete(self, gateway, account_id):
        item = CatalogItemIn(name="Logo design", price=350, is_recurring=False)
        assert (await gateway.save_catalog_item(account_id, item)).ok
        assert (await gateway.save_catalog_item(account_id, item.model_copy(update={"price": 400}))).ok

        (stored,) = await gateway.fetch_catalog(account_id)
        assert stored.price == 400

        assert (await gateway.delete_catalog_item(account_id, item.id)).ok
        assert await gateway.fetch_catalog(account_id) == []

    async def test_delete_unknown_item(self, gateway, account_id):
        result = await gateway.delete_catalog_item(account_id, "cat_missing")
        assert not result.found
