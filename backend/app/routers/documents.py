"""Invoices, quotes and expenses.

Endpoints:
    GET    /api/documents/                  List documents (newest first)
    GET    /api/documents/{id}              Get one document
    POST   /api/documents/preview           Totals for wizard content
    POST   /api/documents/drafts            Save a new draft
    PUT    /api/documents/drafts/{id}       Re-save an existing draft
    POST   /api/documents/                  Finalize (issue) a document
    PATCH  /api/documents/{id}              Edit content
    POST   /api/documents/{id}/status       Change status
    POST   /api/documents/{id}/payments     Record a payment
    POST   /api/documents/{id}/convert      Convert a quote into an invoice
    DELETE /api/documents/{id}              Delete
    POST   /api/documents/sync              Replay writes queued while offline
    PUT    /api/documents/sequences/{type}  Configure numbering

Writes answer 202 instead of 200/201 when the document could not be
stored yet (``sync_state`` PendingSync or Failed).
"""

from fastapi import APIRouter, Depends, Response, status

from app.auth.deps import get_current_account, get_document_service, get_gateway
from app.middleware.exceptions import BusinessLogicError
from app.schemas.document import (
    ConversionResult,
    Document,
    DocumentDraft,
    DocumentType,
    DocumentUpdate,
    FinalizeRequest,
    PaymentIn,
    PreviewRequest,
    SequenceConfig,
    StatusChange,
    SyncReport,
    SyncState,
    Totals,
)
from app.services.documents import DocumentService
from app.services.gateway import PersistenceGateway

router = APIRouter()


def _respond(document: Document, response: Response) -> Document:
    if document.sync_state != SyncState.SYNCED:
        response.status_code = status.HTTP_202_ACCEPTED
    return document


# ── Reads ───────────────────────────────────────────────────

@router.get("/", response_model=list[Document])
async def list_documents(
    type: DocumentType | None = None,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    """All documents of the account, optionally filtered by type."""
    documents = await service.list_documents(account_id)
    if type is not None:
        documents = [d for d in documents if d.type == type]
    return documents


@router.post("/preview", response_model=Totals)
async def preview_totals(
    body: PreviewRequest,
    _account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    return service.preview(body.items, body.discount)


@router.post("/sync", response_model=SyncReport)
async def sync_pending(
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    return await service.reconcile(account_id)


@router.get("/{document_id}", response_model=Document)
async def get_document(
    document_id: str,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    return await service.get_document(account_id, document_id)


# ── Wizard ──────────────────────────────────────────────────

@router.post("/drafts", response_model=Document, status_code=status.HTTP_201_CREATED)
async def create_draft(
    body: DocumentDraft,
    response: Response,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    return _respond(await service.save_draft(account_id, body), response)


@router.put("/drafts/{draft_id}", response_model=Document)
async def save_draft(
    draft_id: str,
    body: DocumentDraft,
    response: Response,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    return _respond(await service.save_draft(account_id, body, existing_id=draft_id), response)


@router.post("/", response_model=Document, status_code=status.HTTP_201_CREATED)
async def finalize_document(
    body: FinalizeRequest,
    response: Response,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    """Issue a document.  Pass ``draft_id`` to replace a saved draft."""
    draft = DocumentDraft.model_validate(body.model_dump(exclude={"draft_id"}))
    document = await service.finalize(account_id, draft, draft_id=body.draft_id)
    return _respond(document, response)


# ── Lifecycle ───────────────────────────────────────────────

@router.patch("/{document_id}", response_model=Document)
async def update_document(
    document_id: str,
    body: DocumentUpdate,
    response: Response,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    return _respond(await service.update_content(account_id, document_id, body), response)


@router.post("/{document_id}/status", response_model=Document)
async def change_status(
    document_id: str,
    body: StatusChange,
    response: Response,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    document = await service.change_status(account_id, document_id, body.status, body.note)
    return _respond(document, response)


@router.post("/{document_id}/payments", response_model=Document)
async def record_payment(
    document_id: str,
    body: PaymentIn,
    response: Response,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    return _respond(await service.record_payment(account_id, document_id, body.amount), response)


@router.post("/{document_id}/convert", response_model=ConversionResult, status_code=status.HTTP_201_CREATED)
async def convert_quote(
    document_id: str,
    response: Response,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    result = await service.convert_quote(account_id, document_id)
    _respond(result.invoice, response)
    return result


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service),
):
    await service.delete(account_id, document_id)


# ── Numbering ───────────────────────────────────────────────

@router.put("/sequences/{doc_type}", response_model=SequenceConfig)
async def configure_sequence(
    doc_type: DocumentType,
    body: SequenceConfig,
    account_id: str = Depends(get_current_account),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """Set the prefix and next number for a document type."""
    result = await gateway.configure_sequence(account_id, doc_type, body.prefix.upper(), body.next_number)
    if not result.ok:
        raise BusinessLogicError(result.error or "Could not save numbering", error_code="SEQUENCE_NOT_SAVED")
    return SequenceConfig(prefix=body.prefix.upper(), next_number=body.next_number)
