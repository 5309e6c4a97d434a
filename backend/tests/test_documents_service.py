"""Document service tests: wizard flow, lifecycle, offline queue."""

import pytest

from app.middleware.exceptions import (
    BusinessLogicError,
    DocumentLockedError,
    InvalidTransitionError,
    PersistenceUnavailableError,
    ResourceNotFoundError,
)
from app.schemas.client import ClientStatus
from app.schemas.document import (
    Document,
    DocumentDraft,
    DocumentStatus,
    DocumentType,
    DocumentUpdate,
    LineItem,
    SyncState,
    TimelineEventType,
)
from app.services.documents import DocumentService, PendingSyncQueue
from app.utils.numbering import is_draft_id


@pytest.mark.integration
@pytest.mark.asyncio
class TestFinalize:

    async def test_issues_invoice(self, service, account_id, invoice_draft):
        doc = await service.finalize(account_id, invoice_draft)

        assert doc.id == "FAC-0001"
        assert doc.status == DocumentStatus.CREATED
        assert doc.sync_state == SyncState.SYNCED
        assert doc.total == pytest.approx(237.6)
        assert doc.discount_rate == pytest.approx(10)
        assert [e.type for e in doc.timeline] == [TimelineEventType.CREATED]

    async def test_registers_client(self, service, account_id, invoice_draft):
        await service.finalize(account_id, invoice_draft)

        (client,) = await service.gateway.fetch_clients(account_id)
        assert client.name == "Acme Corp"
        assert client.status == ClientStatus.CLIENT
        assert client.tax_id == "8-123-456"

    async def test_quote_registers_prospect(self, service, account_id, quote_draft):
        doc = await service.finalize(account_id, quote_draft)

        assert doc.id == "COT-0001"
        (client,) = await service.gateway.fetch_clients(account_id)
        assert client.status == ClientStatus.PROSPECT

    async def test_expense_is_paid(self, service, account_id):
        draft = DocumentDraft(
            type=DocumentType.EXPENSE,
            client_name="Cloud Hosting Inc",
            items=[LineItem(description="Servers", quantity=1, price=80, tax_rate=7)],
        )
        doc = await service.finalize(account_id, draft)

        assert doc.id == "EXP-0001"
        assert doc.status == DocumentStatus.PAID
        assert doc.amount_paid == pytest.approx(85.6)
        assert await service.gateway.fetch_clients(account_id) == []

    async def test_expense_registers_provider(self, service, account_id):
        draft = DocumentDraft(
            type=DocumentType.EXPENSE,
            client_name="Cloud Hosting Inc",
            client_tax_id="155-22-9",
            category="Infrastructure",
            items=[LineItem(description="Servers", quantity=1, price=80, tax_rate=7)],
        )
        await service.finalize(account_id, draft)

        (provider,) = await service.gateway.fetch_providers(account_id)
        assert provider.name == "Cloud Hosting Inc"
        assert provider.tax_id == "155-22-9"
        assert provider.category == "Infrastructure"

    async def test_numbers_are_sequential(self, service, account_id, invoice_draft):
        first = await service.finalize(account_id, invoice_draft)
        second = await service.finalize(account_id, invoice_draft)
        assert (first.id, second.id) == ("FAC-0001", "FAC-0002")

    async def test_skips_numbers_already_taken(self, service, account_id, invoice_draft):
        await service.gateway.upsert(Document(
            id="FAC-0001", user_id=account_id, client_name="Imported", status=DocumentStatus.PAID,
        ))

        assert (await service.finalize(account_id, invoice_draft)).id == "FAC-0002"
        assert (await service.finalize(account_id, invoice_draft)).id == "FAC-0003"

    async def test_requires_items(self, service, account_id, invoice_draft):
        with pytest.raises(BusinessLogicError) as exc_info:
            await service.finalize(account_id, invoice_draft.model_copy(update={"items": []}))
        assert exc_info.value.error_code == "EMPTY_DOCUMENT"

    async def test_retried_finalize_returns_issued_document(self, service, account_id, invoice_draft):
        draft = await service.save_draft(account_id, invoice_draft)

        first = await service.finalize(account_id, invoice_draft, draft_id=draft.id)
        retry = await service.finalize(account_id, invoice_draft, draft_id=draft.id)

        assert first.id == retry.id == "FAC-0001"
        assert first.extension_data["draft_id"] == draft.id
        assert [d.id for d in await service.list_documents(account_id)] == ["FAC-0001"]
        assert (await service.finalize(account_id, invoice_draft)).id == "FAC-0002"

    async def test_unknown_draft_id(self, service, account_id, invoice_draft):
        with pytest.raises(ResourceNotFoundError):
            await service.finalize(account_id, invoice_draft, draft_id="DRAFT-00000000")
        assert await service.list_documents(account_id) == []

    async def test_requires_client(self, service, account_id, invoice_draft):
        with pytest.raises(BusinessLogicError):
            await service.finalize(account_id, invoice_draft.model_copy(update={"client_name": "  "}))


@pytest.mark.integration
@pytest.mark.asyncio
class TestDrafts:

    async def test_draft_gets_provisional_id(self, service, account_id, invoice_draft):
        draft = await service.save_draft(account_id, invoice_draft)

        assert is_draft_id(draft.id)
        assert draft.status == DocumentStatus.DRAFT
        assert draft.timeline == []

    async def test_resaving_does_not_burn_numbers(self, service, account_id, invoice_draft):
        draft = await service.save_draft(account_id, invoice_draft)
        again = await service.save_draft(
            account_id, invoice_draft.model_copy(update={"notes": "v2"}), existing_id=draft.id,
        )
        assert again.id == draft.id

        doc = await service.finalize(account_id, invoice_draft, draft_id=draft.id)

        assert doc.id == "FAC-0001"
        assert [d.id for d in await service.list_documents(account_id)] == ["FAC-0001"]

    async def test_issuing_a_draft_by_status(self, service, account_id, invoice_draft):
        draft = await service.save_draft(account_id, invoice_draft)
        doc = await service.change_status(account_id, draft.id, DocumentStatus.CREATED)

        assert doc.status == DocumentStatus.CREATED
        assert [e.type for e in doc.timeline] == [TimelineEventType.CREATED]
        assert doc.id == "FAC-0001"
        assert [d.id for d in await service.list_documents(account_id)] == ["FAC-0001"]

    async def test_issuing_empty_draft_by_status(self, service, account_id, invoice_draft):
        draft = await service.save_draft(account_id, invoice_draft.model_copy(update={"items": []}))

        with pytest.raises(BusinessLogicError) as exc_info:
            await service.change_status(account_id, draft.id, DocumentStatus.CREATED)
        assert exc_info.value.error_code == "EMPTY_DOCUMENT"
        assert (await service.get_document(account_id, draft.id)).is_draft

    async def test_expense_drafts_rejected(self, service, account_id):
        with pytest.raises(BusinessLogicError):
            await service.save_draft(account_id, DocumentDraft(type=DocumentType.EXPENSE))

    async def test_existing_id_must_be_draft(self, service, account_id, invoice_draft):
        with pytest.raises(BusinessLogicError):
            await service.save_draft(account_id, invoice_draft, existing_id="FAC-0001")


@pytest.mark.integration
@pytest.mark.asyncio
class TestLifecycle:

    async def test_payments(self, service, account_id, invoice_draft):
        doc = await service.finalize(account_id, invoice_draft)

        doc = await service.record_payment(account_id, doc.id, 100)
        assert doc.status == DocumentStatus.PARTIALLY_PAID

        doc = await service.record_payment(account_id, doc.id, 137.6)
        assert doc.status == DocumentStatus.PAID
        stored = await service.get_document(account_id, doc.id)
        assert stored.amount_paid == pytest.approx(237.6)

    async def test_invalid_transition(self, service, account_id, invoice_draft):
        doc = await service.finalize(account_id, invoice_draft)
        with pytest.raises(InvalidTransitionError):
            await service.change_status(account_id, doc.id, DocumentStatus.NEGOTIATION)

    async def test_update_recomputes_total(self, service, account_id, invoice_draft):
        doc = await service.finalize(account_id, invoice_draft)
        updated = await service.update_content(account_id, doc.id, DocumentUpdate(
            items=[LineItem(description="Design", quantity=1, price=100, tax_rate=7)],
            discount=None,
        ))

        assert updated.total == pytest.approx(107)
        assert updated.discount is None
        assert updated.totals_consistent

    async def test_paid_invoice_content_locked(self, service, account_id, invoice_draft):
        doc = await service.finalize(account_id, invoice_draft)
        await service.change_status(account_id, doc.id, DocumentStatus.PAID)

        with pytest.raises(DocumentLockedError) as exc_info:
            await service.update_content(account_id, doc.id, DocumentUpdate(client_name="Someone else"))
        assert "client_name" in exc_info.value.details["locked_fields"]

        noted = await service.update_content(account_id, doc.id, DocumentUpdate(notes="Paid by wire"))
        assert noted.notes == "Paid by wire"

    async def test_get_unknown(self, service, account_id):
        with pytest.raises(ResourceNotFoundError):
            await service.get_document(account_id, "FAC-0404")

    async def test_delete(self, service, account_id, invoice_draft):
        doc = await service.finalize(account_id, invoice_draft)
        await service.delete(account_id, doc.id)

        assert await service.list_documents(account_id) == []
        with pytest.raises(ResourceNotFoundError):
            await service.delete(account_id, doc.id)


@pytest.mark.integration
@pytest.mark.asyncio
class TestConvertQuote:

    async def test_converts_negotiated_quote(self, service, account_id, quote_draft):
        quote = await service.finalize(account_id, quote_draft)
        await service.change_status(account_id, quote.id, DocumentStatus.NEGOTIATION)

        result = await service.convert_quote(account_id, quote.id)

        assert result.quote.status == DocumentStatus.ACCEPTED
        assert result.quote.extension_data["converted_to"] == "FAC-0001"
        assert result.invoice.id == "FAC-0001"
        assert result.invoice.total == pytest.approx(quote.total)
        assert result.invoice.timeline[0].type == TimelineEventType.CONVERTED
        assert result.invoice.timeline[0].description == quote.id

        (client,) = await service.gateway.fetch_clients(account_id)
        assert client.status == ClientStatus.CLIENT

    async def test_converts_once(self, service, account_id, quote_draft):
        quote = await service.finalize(account_id, quote_draft)
        await service.convert_quote(account_id, quote.id)

        with pytest.raises(BusinessLogicError) as exc_info:
            await service.convert_quote(account_id, quote.id)
        assert exc_info.value.error_code == "QUOTE_ALREADY_CONVERTED"

    async def test_rejected_quote_not_convertible(self, service, account_id, quote_draft):
        quote = await service.finalize(account_id, quote_draft)
        await service.change_status(account_id, quote.id, DocumentStatus.REJECTED)

        with pytest.raises(BusinessLogicError):
            await service.convert_quote(account_id, quote.id)

    async def test_invoices_not_convertible(self, service, account_id, invoice_draft):
        invoice = await service.finalize(account_id, invoice_draft)
        with pytest.raises(BusinessLogicError):
            await service.convert_quote(account_id, invoice.id)


@pytest.mark.integration
@pytest.mark.asyncio
class TestOfflineQueue:

    async def test_finalize_offline_keeps_intended_status(self, offline_gateway, account_id, invoice_draft):
        service = DocumentService(offline_gateway, queue=PendingSyncQueue())

        doc = await service.finalize(account_id, invoice_draft)

        assert doc.status == DocumentStatus.CREATED
        assert doc.sync_state == SyncState.PENDING_SYNC
        assert is_draft_id(doc.id)
        assert len(service.queue) == 1

    async def test_reconcile_restores_documents(self, offline_gateway, gateway, account_id, invoice_draft):
        queue = PendingSyncQueue()
        service = DocumentService(offline_gateway, queue=queue)
        pending = await service.finalize(account_id, invoice_draft)
        pending = await service.change_status(account_id, pending.id, DocumentStatus.ACCEPTED)
        assert pending.sync_state == SyncState.PENDING_SYNC

        service.gateway = gateway
        report = await service.reconcile(account_id)

        assert report.synced == ["FAC-0001"]
        assert report.still_pending == []
        assert len(queue) == 0
        stored = await gateway.fetch_one(account_id, "FAC-0001")
        assert stored.status == DocumentStatus.ACCEPTED
        assert stored.sync_state == SyncState.SYNCED
        assert [c.status for c in await gateway.fetch_clients(account_id)] == [ClientStatus.CLIENT]

    async def test_reconcile_while_still_offline(self, offline_gateway, account_id, invoice_draft):
        service = DocumentService(offline_gateway, queue=PendingSyncQueue())
        doc = await service.finalize(account_id, invoice_draft)

        report = await service.reconcile(account_id)

        assert report.still_pending == [doc.id]
        assert len(service.queue) == 1

    async def test_drafts_saved_offline_replay(self, offline_gateway, gateway, account_id, invoice_draft):
        service = DocumentService(offline_gateway, queue=PendingSyncQueue())
        draft = await service.save_draft(account_id, invoice_draft)
        assert draft.sync_state == SyncState.PENDING_SYNC

        service.gateway = gateway
        report = await service.reconcile(account_id)

        assert report.synced == [draft.id]
        assert (await gateway.fetch_one(account_id, draft.id)).status == DocumentStatus.DRAFT

    async def test_listing_offline_is_unavailable(self, offline_gateway, account_id):
        service = DocumentService(offline_gateway)
        with pytest.raises(PersistenceUnavailableError):
            await service.list_documents(account_id)

    async def test_list_includes_pending_documents(self, service, offline_gateway, account_id, invoice_draft):
        stored = await service.finalize(account_id, invoice_draft)
        online = service.gateway

        service.gateway = offline_gateway
        pending = await service.save_draft(account_id, invoice_draft)
        service.gateway = online

        ids = {d.id for d in await service.list_documents(account_id)}
        assert ids == {stored.id, pending.id}


@pytest.mark.integration
@pytest.mark.asyncio
class TestAccountIsolation:

    async def test_accounts_number_independently(self, service, account_id, other_account_id, invoice_draft):
        mine = await service.finalize(account_id, invoice_draft)
        theirs = await service.finalize(other_account_id, invoice_draft)

        assert mine.id == theirs.id == "FAC-0001"
        assert [d.id for d in await service.list_documents(account_id)] == ["FAC-0001"]
        assert [d.id for d in await service.list_documents(other_account_id)] == ["FAC-0001"]

        await service.record_payment(other_account_id, theirs.id, 10)
        assert (await service.get_document(account_id, mine.id)).amount_paid == 0

    async def test_same_draft_id_in_two_accounts(self, service, account_id, other_account_id, invoice_draft):
        draft = await service.save_draft(account_id, invoice_draft)
        await service.save_draft(
            other_account_id,
            invoice_draft.model_copy(update={"client_name": "Someone else"}),
            existing_id=draft.id,
        )

        assert (await service.get_document(account_id, draft.id)).client_name == "Acme Corp"
        assert (await service.get_document(other_account_id, draft.id)).client_name == "Someone else"

    async def test_deleting_leaves_other_account_alone(self, service, account_id, other_account_id, invoice_draft):
        await service.finalize(account_id, invoice_draft)
        await service.finalize(other_account_id, invoice_draft)

        await service.delete(other_account_id, "FAC-0001")

        assert [d.id for d in await service.list_documents(account_id)] == ["FAC-0001"]
        assert await service.list_documents(other_account_id) == []
