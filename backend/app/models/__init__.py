"""Aggregate model imports for Alembic auto-detection."""

# Documents
from app.models.document import DocumentRecord  # noqa: F401
from app.models.expense import ExpenseRecord  # noqa: F401
from app.models.document_sequence import DocumentSequence  # noqa: F401

# Registry
from app.models.client import ClientRecord, ProspectRecord  # noqa: F401
from app.models.catalog_item import CatalogItem  # noqa: F401
from app.models.provider import ProviderRecord  # noqa: F401

# Audit
from app.models.audit_log import AuditLog  # noqa: F401
