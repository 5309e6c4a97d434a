"""Document service — the invoice/quote/expense wizard flow.

Flow:
  1. preview       → totals for the items being edited (no persistence)
  2. save_draft    → Draft with a provisional DRAFT-xxxxxxxx id
  3. finalize      → number allocated, status Created (expenses: Paid),
                     CREATED event, draft row replaced in the same write
  4. change_status / record_payment / update_content / convert_quote

Totals are recomputed from items + discount on every write; a total sent
by the caller is never trusted.

Offline: when the gateway reports the store unreachable the document is
returned with ``sync_state=PendingSync`` and parked in the
PendingSyncQueue.  ``reconcile`` replays the queue on demand; documents
finalized offline keep their provisional id until then and get their
number at reconciliation time.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timezone

from app.middleware.exceptions import (
    BusinessLogicError,
    DocumentLockedError,
    PersistenceUnavailableError,
    ResourceNotFoundError,
)
from app.schemas.client import ClientIn, ClientStatus, ProviderIn
from app.schemas.document import (
    ConversionResult,
    Discount,
    Document,
    DocumentDraft,
    DocumentStatus,
    DocumentType,
    DocumentUpdate,
    LineItem,
    SyncReport,
    SyncState,
    TimelineEventType,
    Totals,
)
from app.services import lifecycle
from app.services.gateway import PersistenceGateway
from app.services.totals import compute
from app.utils.locks import get_document_locks
from app.utils.numbering import allocate, is_draft_id, new_draft_id

logger = logging.getLogger("konsul.documents")

CONVERTIBLE_QUOTE_STATUSES = frozenset({
    DocumentStatus.CREATED, DocumentStatus.NEGOTIATION, DocumentStatus.ACCEPTED,
})


# ── Offline queue ───────────────────────────────────────────

class PendingSyncQueue:
    """Documents whose last write could not reach the store, per account.

    Each entry remembers the row id it replaces (a draft being finalized)
    so the replay performs the same write the original save intended.
    """

    def __init__(self):
        self._entries: dict[str, OrderedDict[str, tuple[Document, str | None]]] = {}

    def put(self, document: Document, replaces: str | None = None) -> None:
        entries = self._entries.setdefault(document.user_id, OrderedDict())
        previous = entries.get(document.id)
        if previous is not None and replaces is None:
            replaces = previous[1]
        entries[document.id] = (document, replaces)

    def get(self, account_id: str, document_id: str) -> Document | None:
        entry = self._entries.get(account_id, {}).get(document_id)
        return entry[0] if entry else None

    def replaces_for(self, account_id: str, document_id: str) -> str | None:
        entry = self._entries.get(account_id, {}).get(document_id)
        return entry[1] if entry else None

    def discard(self, account_id: str, document_id: str) -> bool:
        return self._entries.get(account_id, {}).pop(document_id, None) is not None

    def entries(self, account_id: str) -> list[tuple[Document, str | None]]:
        return list(self._entries.get(account_id, {}).values())

    def pending(self, account_id: str) -> list[Document]:
        return [doc for doc, _ in self.entries(account_id)]

    def __len__(self) -> int:
        return sum(len(e) for e in self._entries.values())


# ── Service ─────────────────────────────────────────────────

def _needs_number(document: Document) -> bool:
    return not document.is_draft and is_draft_id(document.id)


def _check_issuable(doc_type: DocumentType, items: list[LineItem], client_name: str) -> None:
    if not items:
        raise BusinessLogicError(
            "At least one line item is required", error_code="EMPTY_DOCUMENT",
        )
    if doc_type != DocumentType.EXPENSE and not client_name.strip():
        raise BusinessLogicError(
            "Client name is required", error_code="CLIENT_REQUIRED",
        )


def apply_totals(document: Document) -> Document:
    """Recompute ``total`` and ``discount_rate`` from items and discount."""
    totals = compute(document.items, document.discount)
    update = {
        "total": round(totals.total, 2),
        "discount_rate": round(totals.effective_discount_rate, 2),
    }
    if document.type == DocumentType.EXPENSE:
        update["amount_paid"] = update["total"]
    return document.model_copy(update=update)


class DocumentService:

    def __init__(
        self,
        gateway: PersistenceGateway,
        queue: PendingSyncQueue | None = None,
        default_currency: str = "USD",
    ):
        self.gateway = gateway
        self.queue = queue if queue is not None else PendingSyncQueue()
        self.default_currency = default_currency

    # ── Reads ───────────────────────────────────────────────

    def preview(self, items: list[LineItem], discount: Discount | None = None) -> Totals:
        return compute(items, discount)

    async def list_documents(self, account_id: str) -> list[Document]:
        """Stored documents merged with pending offline writes, newest first.

        Raises:
            PersistenceUnavailableError: store unreachable
        """
        stored = await self.gateway.fetch_all(account_id)
        if stored is None:
            raise PersistenceUnavailableError()

        pending = {doc.id: doc for doc in self.queue.pending(account_id)}
        merged = [pending.pop(doc.id, doc) for doc in stored]
        merged.extend(pending.values())
        return sorted(merged, key=lambda d: d.date, reverse=True)

    async def _find(self, account_id: str, document_id: str) -> Document | None:
        pending = self.queue.get(account_id, document_id)
        if pending is not None:
            return pending
        return await self.gateway.fetch_one(account_id, document_id)

    async def get_document(self, account_id: str, document_id: str) -> Document:
        document = await self._find(account_id, document_id)
        if document is None:
            raise ResourceNotFoundError("Document", document_id)
        return document

    # ── Wizard ──────────────────────────────────────────────

    def _build(
        self,
        account_id: str,
        draft: DocumentDraft,
        document_id: str,
        status: DocumentStatus,
    ) -> Document:
        document = Document(
            id=document_id,
            user_id=account_id,
            type=draft.type,
            client_name=draft.client_name.strip(),
            client_tax_id=draft.client_tax_id,
            client_email=draft.client_email,
            client_address=draft.client_address,
            items=draft.items,
            discount=draft.discount,
            currency=draft.currency or self.default_currency,
            status=status,
            date=draft.date or datetime.now(timezone.utc),
            notes=draft.notes,
            receipt_url=draft.receipt_url,
            category=draft.category,
            extension_data=draft.extension_data,
        )
        return apply_totals(document)

    async def save_draft(
        self,
        account_id: str,
        draft: DocumentDraft,
        existing_id: str | None = None,
    ) -> Document:
        """Save wizard content as a Draft.  Re-saving keeps the same draft id."""
        if draft.type == DocumentType.EXPENSE:
            raise BusinessLogicError(
                "Expenses are recorded directly and have no draft state",
                error_code="DRAFT_NOT_ALLOWED",
            )
        if existing_id is not None and not is_draft_id(existing_id):
            raise BusinessLogicError(
                f"{existing_id} is not a draft", error_code="NOT_A_DRAFT",
            )

        document = self._build(
            account_id, draft, existing_id or new_draft_id(), DocumentStatus.DRAFT,
        )
        return await self._persist(document)

    async def finalize(
        self,
        account_id: str,
        draft: DocumentDraft,
        draft_id: str | None = None,
    ) -> Document:
        """Issue a document: allocate its number and move it out of Draft.

        Finalizing a draft that was already issued (a retried request)
        returns the issued document instead of allocating a second number.

        Raises:
            BusinessLogicError: no line items, no client, or draft_id is not a draft
            ResourceNotFoundError: draft_id is neither stored nor issued
        """
        _check_issuable(draft.type, draft.items, draft.client_name)
        if draft_id is not None:
            if not is_draft_id(draft_id):
                raise BusinessLogicError(f"{draft_id} is not a draft", error_code="NOT_A_DRAFT")
            issued = await self._already_issued(account_id, draft_id)
            if issued is not None:
                return issued

        document = self._build(
            account_id,
            draft,
            draft_id or new_draft_id(),
            lifecycle.initial_status(draft.type, as_draft=False),
        )
        document = lifecycle.start_timeline(document)
        saved = await self._persist(document, replaces=draft_id)
        await self._register_client(saved)
        return saved

    # ── Lifecycle ───────────────────────────────────────────

    async def change_status(
        self,
        account_id: str,
        document_id: str,
        target: DocumentStatus,
        note: str | None = None,
    ) -> Document:
        document = await self.get_document(account_id, document_id)
        if document.is_draft and target == DocumentStatus.CREATED:
            # Same rules and CREATED event as finalize
            _check_issuable(document.type, document.items, document.client_name)
            issued = document.model_copy(update={"status": DocumentStatus.CREATED})
            updated = apply_totals(lifecycle.start_timeline(issued, note))
        else:
            updated = lifecycle.transition(document, target, note)
        saved = await self._persist(updated)
        if document.is_draft:
            await self._register_client(saved)
        return saved

    async def record_payment(self, account_id: str, document_id: str, amount: float) -> Document:
        document = await self.get_document(account_id, document_id)
        return await self._persist(lifecycle.record_payment(document, amount))

    async def update_content(
        self,
        account_id: str,
        document_id: str,
        update: DocumentUpdate,
    ) -> Document:
        """Edit content fields; totals are recomputed.

        Raises:
            DocumentLockedError: an edited field is frozen by the status
        """
        document = await self.get_document(account_id, document_id)
        changes = update.model_dump(exclude_unset=True)

        locks = get_document_locks(document)
        conflict = locks.check_update(set(changes))
        if conflict is not None:
            raise DocumentLockedError(
                f"{conflict.reason}. {conflict.unlock_hint}",
                locks.locked_field_names(),
            )

        current = document.model_dump(exclude={"totals_consistent"})
        updated = apply_totals(Document.model_validate({**current, **changes}))
        return await self._persist(updated)

    async def convert_quote(self, account_id: str, quote_id: str) -> ConversionResult:
        """Turn an open or accepted quote into a new invoice.

        The quote ends Accepted and records the invoice id in
        ``extension_data["converted_to"]``; the invoice starts with a
        CONVERTED event instead of CREATED.
        """
        quote = await self.get_document(account_id, quote_id)
        if quote.type != DocumentType.QUOTE:
            raise BusinessLogicError(
                f"{quote_id} is not a quote", error_code="NOT_A_QUOTE",
            )
        if quote.extension_data.get("converted_to"):
            raise BusinessLogicError(
                f"Quote {quote_id} was already converted to {quote.extension_data['converted_to']}",
                error_code="QUOTE_ALREADY_CONVERTED",
            )
        if quote.status not in CONVERTIBLE_QUOTE_STATUSES:
            raise BusinessLogicError(
                f"A {quote.status.value} quote cannot be converted",
                error_code="QUOTE_NOT_CONVERTIBLE",
            )

        draft = DocumentDraft(
            type=DocumentType.INVOICE,
            client_name=quote.client_name,
            client_tax_id=quote.client_tax_id,
            client_email=quote.client_email,
            client_address=quote.client_address,
            items=quote.items,
            discount=quote.discount,
            currency=quote.currency,
            notes=quote.notes,
        )
        invoice = self._build(account_id, draft, new_draft_id(), DocumentStatus.CREATED)
        invoice = lifecycle.append_event(
            invoice, TimelineEventType.CONVERTED, "Converted from quote", quote.id,
        )
        invoice = await self._persist(invoice)

        if quote.status != DocumentStatus.ACCEPTED:
            quote = lifecycle.transition(quote, DocumentStatus.ACCEPTED, f"Converted to {invoice.id}")
        quote = quote.model_copy(update={
            "extension_data": {**quote.extension_data, "converted_to": invoice.id},
        })
        quote = await self._persist(quote)

        await self._register_client(invoice)
        return ConversionResult(quote=quote, invoice=invoice)

    async def delete(self, account_id: str, document_id: str) -> None:
        """Delete a document, dropping any pending offline write for it.

        Raises:
            ResourceNotFoundError: neither stored nor pending
            PersistenceUnavailableError: store unreachable
        """
        was_pending = self.queue.discard(account_id, document_id)
        result = await self.gateway.delete(document_id, account_id)
        if result.ok:
            return
        if not result.reachable:
            raise PersistenceUnavailableError()
        if not result.found:
            if was_pending:
                return
            raise ResourceNotFoundError("Document", document_id)
        raise BusinessLogicError(result.error or "Delete failed", error_code="DELETE_FAILED")

    # ── Sync ────────────────────────────────────────────────

    async def reconcile(self, account_id: str) -> SyncReport:
        """Replay every pending write for the account."""
        report = SyncReport(synced=[], still_pending=[], failed=[])
        for document, replaces in self.queue.entries(account_id):
            saved = await self._persist(document, replaces=replaces)
            if saved.sync_state == SyncState.SYNCED:
                report.synced.append(saved.id)
                if document.id != saved.id:
                    await self._register_client(saved)
            elif saved.sync_state == SyncState.PENDING_SYNC:
                report.still_pending.append(saved.id)
            else:
                report.failed.append(saved.id)

        logger.info(
            "Reconciled %s: %d synced, %d pending, %d failed",
            account_id, len(report.synced), len(report.still_pending), len(report.failed),
        )
        return report

    # ── Internals ───────────────────────────────────────────

    async def _already_issued(self, account_id: str, draft_id: str) -> Document | None:
        """The document a finalize of ``draft_id`` must return as-is, if any.

        None means the draft is still a draft and may be issued.  While the
        store is unreachable nothing can be verified and the finalize goes
        ahead (it is queued with the draft id anyway).
        """
        try:
            stored = await self._find(account_id, draft_id)
            if stored is not None:
                return None if stored.is_draft else stored
            issued = await self.gateway.find_issued(account_id, draft_id)
        except PersistenceUnavailableError:
            logger.warning("Store unreachable, finalizing %s unverified", draft_id)
            return None
        if issued is None:
            raise ResourceNotFoundError("Draft", draft_id)
        logger.info("%s was already issued as %s", draft_id, issued.id)
        return issued

    async def _allocate(self, account_id: str, doc_type: DocumentType) -> str | None:
        """Reserve a number and skip past ids already taken.  None if offline."""
        reserved = await self.gateway.reserve_number(account_id, doc_type)
        if reserved is None:
            return None
        prefix, number = reserved

        existing = await self.gateway.existing_ids(account_id, doc_type)
        if existing is None:
            return None

        code, used = allocate(doc_type, prefix, number, existing)
        if used != number:
            logger.info("Skipped %d taken %s numbers", used - number, doc_type.value)
            await self.gateway.advance_sequence(account_id, doc_type, used)
        return code

    def _hold(self, document: Document, replaces: str | None, previous_id: str) -> Document:
        pending = lifecycle.with_sync_state(document, SyncState.PENDING_SYNC)
        if previous_id != pending.id:
            self.queue.discard(pending.user_id, previous_id)
        self.queue.put(pending, replaces)
        logger.warning("Store unreachable, %s queued for sync", pending.id)
        return pending

    async def _persist(self, document: Document, replaces: str | None = None) -> Document:
        account_id = document.user_id
        previous_id = document.id
        replaces = replaces or self.queue.replaces_for(account_id, previous_id)

        if _needs_number(document):
            code = await self._allocate(account_id, document.type)
            if code is None:
                return self._hold(document, replaces, previous_id)
            replaces = previous_id
            document = document.model_copy(update={
                "id": code,
                "extension_data": {**document.extension_data, "draft_id": previous_id},
            })

        synced = lifecycle.with_sync_state(document, SyncState.SYNCED)
        result = await self.gateway.upsert(synced, replaces=replaces)
        if result.ok:
            self.queue.discard(account_id, previous_id)
            return synced
        if not result.reachable:
            return self._hold(document, replaces, previous_id)

        logger.error("Save of %s rejected by the store: %s", document.id, result.error)
        self.queue.discard(account_id, previous_id)
        return lifecycle.with_sync_state(document, SyncState.FAILED)

    async def _register_client(self, document: Document) -> None:
        """Record the counterparty: invoices promote, quotes add a prospect,
        expenses record the provider."""
        if document.sync_state != SyncState.SYNCED or not document.client_name:
            return
        if document.type == DocumentType.EXPENSE:
            result = await self.gateway.save_provider(document.user_id, ProviderIn(
                name=document.client_name,
                tax_id=document.client_tax_id,
                email=document.client_email,
                address=document.client_address,
                category=document.category,
            ))
            if not result.ok:
                logger.warning("Provider registry update for %s failed: %s", document.id, result.error)
            return
        if document.type == DocumentType.INVOICE:
            status = ClientStatus.CLIENT
        else:
            status = ClientStatus.PROSPECT

        result = await self.gateway.save_client(document.user_id, ClientIn(
            name=document.client_name,
            tax_id=document.client_tax_id,
            email=document.client_email,
            address=document.client_address,
            status=status,
        ))
        if not result.ok:
            logger.warning("Client registry update for %s failed: %s", document.id, result.error)
