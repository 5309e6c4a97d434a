"""Persistence gateway — the only code that talks to the document store.

Lifecycle:
    gateway = PersistenceGateway.init(DatabaseConfig.from_settings(settings))
    ...
    await gateway.dispose()

Contract:
  - ``upsert`` / ``delete`` return a SaveResult and never raise for
    database trouble; ``reachable=False`` tells the caller to queue the
    write for later instead of treating it as a failure.
  - ``fetch_*`` return None when the store cannot be read.
  - Writes are insert-or-update keyed by id, so retrying a save is safe.
  - Invoices/quotes live in ``invoices``, expenses in ``expenses``; reads
    merge both into one stream tagged by ``type``.
  - A drift-class error (missing table/column, wrong column type) triggers
    one schema repair and exactly one retry.
  - Each successful write appends an audit row in the same transaction.

No optimistic concurrency: concurrent saves of the same id are last write
wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from pydantic import ValidationError
from sqlalchemy import Table, delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from app.config import DatabaseConfig
from app.database import Base, build_engine, build_sessionmaker
from app.middleware.exceptions import ConfigurationError, PersistenceUnavailableError
from app.models.audit_log import AuditLog
from app.models.catalog_item import CatalogItem
from app.models.client import ClientRecord, ProspectRecord
from app.models.document import DocumentRecord
from app.models.document_sequence import DocumentSequence
from app.models.expense import ExpenseRecord
from app.models.provider import ProviderRecord
from app.schemas.catalog import CatalogItemIn, CatalogItemOut
from app.schemas.client import (
    ClientIn,
    ClientOut,
    ClientStatus,
    ProviderIn,
    ProviderOut,
    client_id_for,
    join_tags,
    provider_id_for,
    split_tags,
)
from app.schemas.document import SNAPSHOT_SCHEMA_VERSION, Document, DocumentType
from app.services.lifecycle import normalise_status
from app.utils.activity import document_summary, log_activity, redact
from app.utils.numbering import DEFAULT_PREFIXES
from app.utils.schema_repair import classify_drift, repair_tables

logger = logging.getLogger("konsul.gateway")

T = TypeVar("T")

SUPPORTED_SCHEMES = ("postgresql", "postgres", "sqlite")

DOCUMENT_TABLES: list[Table] = [
    DocumentRecord.__table__, ExpenseRecord.__table__, AuditLog.__table__,
]
SEQUENCE_TABLES: list[Table] = [DocumentSequence.__table__]
CLIENT_TABLES: list[Table] = [
    ClientRecord.__table__, ProspectRecord.__table__, AuditLog.__table__,
]
CATALOG_TABLES: list[Table] = [CatalogItem.__table__, AuditLog.__table__]
PROVIDER_TABLES: list[Table] = [ProviderRecord.__table__, AuditLog.__table__]

# camelCase keys written by earlier builds → current snapshot keys
LEGACY_SNAPSHOT_KEYS = {
    "userId": "user_id",
    "clientName": "client_name",
    "clientTaxId": "client_tax_id",
    "clientEmail": "client_email",
    "clientAddress": "client_address",
    "discountRate": "discount_rate",
    "amountPaid": "amount_paid",
    "receiptUrl": "receipt_url",
    "successProbability": "success_probability",
}


@dataclass
class SaveResult:
    ok: bool
    reachable: bool = True
    found: bool = True
    error: str | None = None

    @classmethod
    def success(cls) -> "SaveResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "SaveResult":
        return cls(ok=False, error=error)

    @classmethod
    def unreachable(cls, error: str) -> "SaveResult":
        return cls(ok=False, reachable=False, error=error)

    @classmethod
    def not_found(cls, error: str) -> "SaveResult":
        return cls(ok=False, found=False, error=error)


def is_unreachable(exc: BaseException) -> bool:
    """True for errors that mean "could not talk to the database"."""
    if isinstance(exc, (OSError, TimeoutError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated or isinstance(exc, InterfaceError):
            return True
        if isinstance(exc.orig, (OSError, TimeoutError)):
            return True
        return isinstance(exc, OperationalError) and classify_drift(exc) is None
    return False


# ── Row mapping ─────────────────────────────────────────────

def _upgrade_snapshot(data: dict) -> dict:
    """Rename legacy camelCase keys; item ``tax`` becomes ``tax_rate``."""
    if data.get("schema_version"):
        return data
    upgraded = {LEGACY_SNAPSHOT_KEYS.get(k, k): v for k, v in data.items()}
    items = []
    for item in upgraded.get("items") or []:
        item = dict(item)
        if "tax" in item and "tax_rate" not in item:
            item["tax_rate"] = item.pop("tax")
        items.append(item)
    upgraded["items"] = items
    upgraded["schema_version"] = SNAPSHOT_SCHEMA_VERSION
    return upgraded


def _snapshot(document: Document) -> dict:
    return document.model_dump(mode="json", exclude={"totals_consistent"})


def _document_from_row(row, doc_type: DocumentType | None = None) -> Document | None:
    data = _upgrade_snapshot(dict(row.data or {}))
    status, sync_override = normalise_status(row.status)
    payload = {
        **data,
        "id": row.id,
        "user_id": row.user_id,
        "total": float(row.total or 0),
        "status": status,
        "sync_state": sync_override or row.sync_state or data.get("sync_state") or "Synced",
    }
    if doc_type == DocumentType.EXPENSE:
        payload.update(
            type=DocumentType.EXPENSE,
            client_name=row.provider_name or data.get("client_name") or "",
            receipt_url=row.receipt_url,
            category=row.category,
        )
    else:
        payload.update(
            type=row.type or data.get("type") or DocumentType.INVOICE,
            client_name=row.client_name or "",
            client_tax_id=row.client_tax_id,
        )
    if row.currency:
        payload["currency"] = row.currency
    if row.date:
        payload["date"] = row.date

    try:
        document = Document.model_validate(payload)
    except ValidationError:
        logger.exception("Skipping unreadable document row %s", row.id)
        return None

    if not document.totals_consistent:
        logger.warning(
            "Stored total %.2f for %s does not match its line items",
            document.total, document.id,
        )
    return document


def _merge_prospect(client: ClientIn, prospect) -> ClientIn:
    """Carry prospect contact details the promoting save leaves empty."""
    return client.model_copy(update={
        "tax_id": client.tax_id or prospect.tax_id,
        "email": client.email or prospect.email,
        "address": client.address or prospect.address,
        "phone": client.phone or prospect.phone,
        "tags": client.tags or split_tags(prospect.tags),
        "notes": client.notes or prospect.notes,
    })


def _client_from_row(row, status: ClientStatus) -> ClientOut:
    return ClientOut(
        id=row.id,
        name=row.name,
        tax_id=row.tax_id,
        email=row.email,
        address=row.address,
        phone=row.phone,
        tags=split_tags(row.tags),
        notes=row.notes,
        status=status,
    )


# ── Gateway ─────────────────────────────────────────────────

class PersistenceGateway:

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._sessionmaker: async_sessionmaker[AsyncSession] = build_sessionmaker(engine)
        self._disposed = False

    @classmethod
    def init(cls, config: DatabaseConfig) -> "PersistenceGateway":
        """Build a gateway for ``config``.

        Raises:
            ConfigurationError: no URL, or an unsupported scheme
        """
        if not config.url:
            raise ConfigurationError(
                "Database is not configured. Set DATABASE_URL.",
                error_code="DATABASE_NOT_CONFIGURED",
            )
        scheme = config.url.split(":", 1)[0].split("+", 1)[0]
        if scheme not in SUPPORTED_SCHEMES:
            raise ConfigurationError(
                f"Unsupported database URL scheme: {scheme}",
                error_code="DATABASE_NOT_CONFIGURED",
            )
        return cls(build_engine(config))

    async def dispose(self) -> None:
        self._disposed = True
        await self._engine.dispose()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    async def create_schema(self) -> None:
        """Create any missing tables (development and tests; production uses Alembic)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        if self._disposed:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(select(1))
            return True
        except (SQLAlchemyError, OSError):
            logger.warning("Database ping failed", exc_info=True)
            return False

    # ── Internals ───────────────────────────────────────────

    def _insert(self, table):
        if self.dialect == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    async def _run(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        tables: list[Table],
    ) -> T:
        """Run ``operation`` in one transaction; on drift, repair once and retry once."""
        if self._disposed:
            raise ConnectionError("Persistence gateway has been disposed")

        for attempt in (1, 2):
            try:
                async with self._sessionmaker() as session:
                    async with session.begin():
                        return await operation(session)
            except DBAPIError as exc:
                kind = classify_drift(exc)
                if kind is None or attempt == 2:
                    raise
                logger.warning("Schema drift detected (%s), repairing and retrying", kind.value)
                async with self._engine.begin() as conn:
                    await conn.run_sync(repair_tables, tables, kind)
        raise AssertionError("unreachable")

    async def _write(
        self,
        operation: Callable[[AsyncSession], Awaitable[SaveResult]],
        tables: list[Table],
        label: str,
    ) -> SaveResult:
        try:
            return await self._run(operation, tables)
        except Exception as exc:  # converted to a result for the caller
            if is_unreachable(exc):
                logger.warning("%s: database unreachable: %s", label, exc)
                return SaveResult.unreachable(str(exc))
            if not isinstance(exc, SQLAlchemyError):
                raise
            logger.error("%s failed: %s", label, exc)
            return SaveResult.failure(str(exc))

    async def _read(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        tables: list[Table],
        label: str,
    ) -> T | None:
        try:
            return await self._run(operation, tables)
        except (SQLAlchemyError, OSError) as exc:
            if is_unreachable(exc):
                logger.warning("%s: database unreachable: %s", label, exc)
            else:
                logger.error("%s failed: %s", label, exc)
            return None

    # ── Documents ───────────────────────────────────────────

    def _document_upsert(self, document: Document):
        snapshot = _snapshot(document)
        now = datetime.utcnow()

        if document.type == DocumentType.EXPENSE:
            category = document.category or (
                document.items[0].description if document.items else None
            ) or "General"
            stmt = self._insert(ExpenseRecord.__table__).values(
                id=document.id,
                user_id=document.user_id,
                provider_name=document.client_name,
                date=document.date.isoformat(),
                total=document.total,
                currency=document.currency,
                category=category,
                receipt_url=document.receipt_url,
                status=document.status.value,
                sync_state=document.sync_state.value,
                data=snapshot,
            )
            return stmt.on_conflict_do_update(
                index_elements=["user_id", "id"],
                set_={
                    "provider_name": stmt.excluded.provider_name,
                    "date": stmt.excluded.date,
                    "total": stmt.excluded.total,
                    "currency": stmt.excluded.currency,
                    "category": stmt.excluded.category,
                    "receipt_url": stmt.excluded.receipt_url,
                    "status": stmt.excluded.status,
                    "sync_state": stmt.excluded.sync_state,
                    "data": stmt.excluded.data,
                },
            )

        stmt = self._insert(DocumentRecord.__table__).values(
            id=document.id,
            user_id=document.user_id,
            client_name=document.client_name,
            client_tax_id=document.client_tax_id,
            total=document.total,
            currency=document.currency,
            status=document.status.value,
            sync_state=document.sync_state.value,
            date=document.date.isoformat(),
            type=document.type.value,
            data=snapshot,
            updated_at=now,
        )
        return stmt.on_conflict_do_update(
            index_elements=["user_id", "id"],
            set_={
                "client_name": stmt.excluded.client_name,
                "client_tax_id": stmt.excluded.client_tax_id,
                "total": stmt.excluded.total,
                "currency": stmt.excluded.currency,
                "status": stmt.excluded.status,
                "sync_state": stmt.excluded.sync_state,
                "date": stmt.excluded.date,
                "type": stmt.excluded.type,
                "data": stmt.excluded.data,
                "updated_at": now,
            },
        )

    async def upsert(self, document: Document, replaces: str | None = None) -> SaveResult:
        """Insert or update ``document``; optionally drop the row it replaces.

        ``replaces`` is the provisional draft id a finalized document takes
        over from; both changes commit together.
        """
        if not document.id or not document.user_id:
            return SaveResult.failure("Document id and owner are required")

        async def op(session: AsyncSession) -> SaveResult:
            await session.execute(self._document_upsert(document))
            if replaces and replaces != document.id:
                await session.execute(
                    delete(DocumentRecord).where(
                        DocumentRecord.id == replaces,
                        DocumentRecord.user_id == document.user_id,
                    )
                )
            log_activity(
                session, document.user_id,
                action="document_saved",
                entity_type=document.type.value,
                entity_id=document.id,
                details={**document_summary(document), "replaces": replaces},
            )
            return SaveResult.success()

        return await self._write(op, DOCUMENT_TABLES, f"Save {document.id}")

    async def fetch_all(self, account_id: str) -> list[Document] | None:
        """All documents of an account, newest first.  None if unreadable."""

        async def op(session: AsyncSession) -> list[Document]:
            invoices = (await session.execute(
                select(DocumentRecord).where(DocumentRecord.user_id == account_id)
            )).scalars().all()
            expenses = (await session.execute(
                select(ExpenseRecord).where(ExpenseRecord.user_id == account_id)
            )).scalars().all()

            documents = [_document_from_row(r) for r in invoices]
            documents += [_document_from_row(r, DocumentType.EXPENSE) for r in expenses]
            return sorted(
                (d for d in documents if d is not None),
                key=lambda d: d.date,
                reverse=True,
            )

        return await self._read(op, DOCUMENT_TABLES, f"Fetch documents for {account_id}")

    async def fetch_one(self, account_id: str, document_id: str) -> Document | None:
        """One document, or None if it does not exist.

        Raises:
            PersistenceUnavailableError: the store could not be read
        """

        async def op(session: AsyncSession) -> Document | None:
            row = (await session.execute(
                select(DocumentRecord).where(
                    DocumentRecord.id == document_id,
                    DocumentRecord.user_id == account_id,
                )
            )).scalar_one_or_none()
            if row is not None:
                return _document_from_row(row)
            row = (await session.execute(
                select(ExpenseRecord).where(
                    ExpenseRecord.id == document_id,
                    ExpenseRecord.user_id == account_id,
                )
            )).scalar_one_or_none()
            if row is not None:
                return _document_from_row(row, DocumentType.EXPENSE)
            return None

        try:
            return await self._run(op, DOCUMENT_TABLES)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Fetch %s failed: %s", document_id, exc)
            raise PersistenceUnavailableError() from exc

    async def existing_ids(self, account_id: str, doc_type: DocumentType) -> set[str] | None:
        """Ids already used by the account in the table ``doc_type`` lives in."""
        model = ExpenseRecord if doc_type == DocumentType.EXPENSE else DocumentRecord

        async def op(session: AsyncSession) -> set[str]:
            result = await session.execute(select(model.id).where(model.user_id == account_id))
            return {row[0] for row in result.all()}

        return await self._read(op, DOCUMENT_TABLES, "Fetch existing ids")

    async def find_issued(self, account_id: str, draft_id: str) -> Document | None:
        """The document that was issued from provisional id ``draft_id``, if any.

        Raises:
            PersistenceUnavailableError: the store could not be read
        """

        async def op(session: AsyncSession) -> Document | None:
            row = (await session.execute(
                select(DocumentRecord).where(
                    DocumentRecord.user_id == account_id,
                    DocumentRecord.data[("extension_data", "draft_id")].as_string() == draft_id,
                )
            )).scalars().first()
            if row is not None:
                return _document_from_row(row)
            row = (await session.execute(
                select(ExpenseRecord).where(
                    ExpenseRecord.user_id == account_id,
                    ExpenseRecord.data[("extension_data", "draft_id")].as_string() == draft_id,
                )
            )).scalars().first()
            return _document_from_row(row, DocumentType.EXPENSE) if row is not None else None

        try:
            return await self._run(op, DOCUMENT_TABLES)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Find document issued from %s failed: %s", draft_id, exc)
            raise PersistenceUnavailableError() from exc

    async def delete(self, document_id: str, account_id: str) -> SaveResult:
        """Delete from invoices, falling back to expenses."""

        async def op(session: AsyncSession) -> SaveResult:
            row = (await session.execute(
                delete(DocumentRecord)
                .where(DocumentRecord.id == document_id, DocumentRecord.user_id == account_id)
                .returning(DocumentRecord.type, DocumentRecord.status,
                           DocumentRecord.total, DocumentRecord.currency)
            )).first()
            if row is not None:
                doc_type = row.type or DocumentType.INVOICE.value
            else:
                row = (await session.execute(
                    delete(ExpenseRecord)
                    .where(ExpenseRecord.id == document_id, ExpenseRecord.user_id == account_id)
                    .returning(ExpenseRecord.status, ExpenseRecord.total, ExpenseRecord.currency)
                )).first()
                doc_type = DocumentType.EXPENSE.value
            if row is None:
                return SaveResult.not_found(f"Document not found: {document_id}")
            log_activity(
                session, account_id,
                action="document_deleted",
                entity_type=doc_type,
                entity_id=document_id,
                details={
                    "type": doc_type,
                    "status": row.status,
                    "total": round(float(row.total or 0), 2),
                    "currency": row.currency,
                },
            )
            return SaveResult.success()

        return await self._write(op, DOCUMENT_TABLES, f"Delete {document_id}")

    # ── Sequences ───────────────────────────────────────────

    async def reserve_number(self, account_id: str, doc_type: DocumentType) -> tuple[str, int] | None:
        """Atomically take the next number for ``doc_type``: (prefix, number).

        The counter row is created on first use with the default prefix.
        """
        table = DocumentSequence.__table__

        async def op(session: AsyncSession) -> tuple[str, int]:
            stmt = self._insert(table).values(
                user_id=account_id,
                doc_type=doc_type.value,
                prefix=DEFAULT_PREFIXES[doc_type],
                next_number=2,
                updated_at=datetime.utcnow(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "doc_type"],
                set_={
                    "next_number": table.c.next_number + 1,
                    "updated_at": datetime.utcnow(),
                },
            ).returning(table.c.prefix, table.c.next_number)
            row = (await session.execute(stmt)).one()
            return row.prefix, row.next_number - 1

        return await self._read(op, SEQUENCE_TABLES, f"Reserve {doc_type.value} number")

    async def advance_sequence(self, account_id: str, doc_type: DocumentType, used_number: int) -> None:
        """Move the counter past ``used_number`` if it is not already beyond it."""

        async def op(session: AsyncSession) -> None:
            await session.execute(
                update(DocumentSequence)
                .where(
                    DocumentSequence.user_id == account_id,
                    DocumentSequence.doc_type == doc_type.value,
                    DocumentSequence.next_number <= used_number,
                )
                .values(next_number=used_number + 1, updated_at=datetime.utcnow())
            )

        await self._read(op, SEQUENCE_TABLES, f"Advance {doc_type.value} sequence")

    async def configure_sequence(
        self,
        account_id: str,
        doc_type: DocumentType,
        prefix: str,
        next_number: int,
    ) -> SaveResult:
        """Set the prefix and next number shown in the account settings."""
        table = DocumentSequence.__table__

        async def op(session: AsyncSession) -> SaveResult:
            stmt = self._insert(table).values(
                user_id=account_id,
                doc_type=doc_type.value,
                prefix=prefix,
                next_number=next_number,
                updated_at=datetime.utcnow(),
            )
            await session.execute(stmt.on_conflict_do_update(
                index_elements=["user_id", "doc_type"],
                set_={
                    "prefix": stmt.excluded.prefix,
                    "next_number": stmt.excluded.next_number,
                    "updated_at": stmt.excluded.updated_at,
                },
            ))
            return SaveResult.success()

        return await self._write(op, SEQUENCE_TABLES, f"Configure {doc_type.value} sequence")

    # ── Clients ─────────────────────────────────────────────

    def _contact_upsert(self, model, client_id: str, account_id: str, client: ClientIn):
        table = model.__table__
        stmt = self._insert(table).values(
            id=client_id,
            user_id=account_id,
            name=client.name,
            tax_id=client.tax_id,
            email=client.email,
            address=client.address,
            phone=client.phone,
            tags=join_tags(client.tags),
            notes=client.notes,
            updated_at=datetime.utcnow(),
        )
        merged = {
            col: func.coalesce(getattr(stmt.excluded, col), table.c[col])
            for col in ("tax_id", "email", "address", "phone", "tags", "notes")
        }
        return stmt.on_conflict_do_update(
            index_elements=["user_id", "id"],
            set_={"name": stmt.excluded.name, "updated_at": datetime.utcnow(), **merged},
        )

    async def save_client(self, account_id: str, client: ClientIn) -> SaveResult:
        """Save a client or prospect.

        CLIENT: upsert into clients and drop any prospect row (promotion).
        PROSPECT: if already a client, only refresh contact fields there;
        a client is never downgraded.
        """
        client_id = client.id or client_id_for(account_id, client.name)

        async def op(session: AsyncSession) -> SaveResult:
            if client.status == ClientStatus.CLIENT:
                prospect = await session.get(ProspectRecord, {"user_id": account_id, "id": client_id})
                promoted = _merge_prospect(client, prospect) if prospect else client
                await session.execute(self._contact_upsert(ClientRecord, client_id, account_id, promoted))
                if prospect is not None:
                    await session.delete(prospect)
            else:
                existing = (await session.execute(
                    select(ClientRecord.id).where(
                        ClientRecord.user_id == account_id, ClientRecord.id == client_id,
                    )
                )).scalar_one_or_none()
                if existing is not None:
                    await session.execute(
                        update(ClientRecord)
                        .where(ClientRecord.user_id == account_id, ClientRecord.id == client_id)
                        .values(
                            tax_id=func.coalesce(client.tax_id, ClientRecord.tax_id),
                            email=func.coalesce(client.email, ClientRecord.email),
                            address=func.coalesce(client.address, ClientRecord.address),
                            phone=func.coalesce(client.phone, ClientRecord.phone),
                            updated_at=datetime.utcnow(),
                        )
                    )
                else:
                    await session.execute(
                        self._contact_upsert(ProspectRecord, client_id, account_id, client)
                    )
            log_activity(
                session, account_id,
                action="client_saved",
                entity_type="client",
                entity_id=client_id,
                details=redact(client.model_dump(mode="json")),
            )
            return SaveResult.success()

        return await self._write(op, CLIENT_TABLES, f"Save client {client_id}")

    async def fetch_clients(self, account_id: str) -> list[ClientOut] | None:
        async def op(session: AsyncSession) -> list[ClientOut]:
            clients = (await session.execute(
                select(ClientRecord).where(ClientRecord.user_id == account_id)
            )).scalars().all()
            prospects = (await session.execute(
                select(ProspectRecord).where(ProspectRecord.user_id == account_id)
            )).scalars().all()
            out = [_client_from_row(r, ClientStatus.CLIENT) for r in clients]
            out += [_client_from_row(r, ClientStatus.PROSPECT) for r in prospects]
            return sorted(out, key=lambda c: c.name.lower())

        return await self._read(op, CLIENT_TABLES, f"Fetch clients for {account_id}")

    # ── Providers ───────────────────────────────────────────

    async def save_provider(self, account_id: str, provider: ProviderIn) -> SaveResult:
        """Upsert an expense provider; empty fields keep their stored values."""
        provider_id = provider.id or provider_id_for(account_id, provider.name)
        table = ProviderRecord.__table__

        async def op(session: AsyncSession) -> SaveResult:
            stmt = self._insert(table).values(
                id=provider_id,
                user_id=account_id,
                name=provider.name,
                tax_id=provider.tax_id,
                email=provider.email,
                address=provider.address,
                phone=provider.phone,
                category=provider.category,
                notes=provider.notes,
                updated_at=datetime.utcnow(),
            )
            merged = {
                col: func.coalesce(getattr(stmt.excluded, col), table.c[col])
                for col in ("tax_id", "email", "address", "phone", "category", "notes")
            }
            await session.execute(stmt.on_conflict_do_update(
                index_elements=["user_id", "id"],
                set_={"name": stmt.excluded.name, "updated_at": datetime.utcnow(), **merged},
            ))
            log_activity(
                session, account_id,
                action="provider_saved",
                entity_type="provider",
                entity_id=provider_id,
                details=redact(provider.model_dump(mode="json")),
            )
            return SaveResult.success()

        return await self._write(op, PROVIDER_TABLES, f"Save provider {provider_id}")

    async def fetch_providers(self, account_id: str) -> list[ProviderOut] | None:
        async def op(session: AsyncSession) -> list[ProviderOut]:
            rows = (await session.execute(
                select(ProviderRecord)
                .where(ProviderRecord.user_id == account_id)
                .order_by(ProviderRecord.name)
            )).scalars().all()
            return [ProviderOut.model_validate(r) for r in rows]

        return await self._read(op, PROVIDER_TABLES, f"Fetch providers for {account_id}")

    # ── Catalog ─────────────────────────────────────────────

    async def fetch_catalog(self, account_id: str) -> list[CatalogItemOut] | None:
        async def op(session: AsyncSession) -> list[CatalogItemOut]:
            rows = (await session.execute(
                select(CatalogItem)
                .where(CatalogItem.user_id == account_id)
                .order_by(CatalogItem.created_at.desc())
            )).scalars().all()
            return [CatalogItemOut.model_validate(r) for r in rows]

        return await self._read(op, CATALOG_TABLES, f"Fetch catalog for {account_id}")

    async def save_catalog_item(self, account_id: str, item: CatalogItemIn) -> SaveResult:
        table = CatalogItem.__table__

        async def op(session: AsyncSession) -> SaveResult:
            stmt = self._insert(table).values(
                id=item.id,
                user_id=account_id,
                name=item.name,
                price=item.price,
                description=item.description,
                sku=item.sku,
                is_recurring=item.is_recurring,
                updated_at=datetime.utcnow(),
            )
            await session.execute(stmt.on_conflict_do_update(
                index_elements=["user_id", "id"],
                set_={
                    "name": stmt.excluded.name,
                    "price": stmt.excluded.price,
                    "description": stmt.excluded.description,
                    "sku": stmt.excluded.sku,
                    "is_recurring": stmt.excluded.is_recurring,
                    "updated_at": stmt.excluded.updated_at,
                },
            ))
            log_activity(
                session, account_id,
                action="catalog_item_saved",
                entity_type="catalog_item",
                entity_id=item.id,
                details={"price": item.price},
            )
            return SaveResult.success()

        return await self._write(op, CATALOG_TABLES, f"Save catalog item {item.id}")

    async def delete_catalog_item(self, account_id: str, item_id: str) -> SaveResult:
        async def op(session: AsyncSession) -> SaveResult:
            result = await session.execute(
                delete(CatalogItem).where(
                    CatalogItem.id == item_id,
                    CatalogItem.user_id == account_id,
                )
            )
            if (result.rowcount or 0) == 0:
                return SaveResult.not_found(f"Catalog item not found: {item_id}")
            log_activity(
                session, account_id,
                action="catalog_item_deleted",
                entity_type="catalog_item",
                entity_id=item_id,
            )
            return SaveResult.success()

        return await self._write(op, CATALOG_TABLES, f"Delete catalog item {item_id}")
