"""Initial billing schema: documents, expenses, numbering, registry, audit.

Tables created with IF NOT EXISTS so databases created by earlier builds
(which already hold invoices/expenses/clients) can be stamped forward;
their missing columns are added below.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op

ACCOUNT_SCOPED_TABLES = (
    "invoices", "expenses", "clients", "prospects", "catalog_items", "providers",
)


def upgrade() -> None:
    # ── Documents ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE IF NOT EXISTS invoices (
            user_id TEXT NOT NULL,
            id TEXT NOT NULL,
            client_name TEXT,
            client_tax_id TEXT,
            total FLOAT DEFAULT 0,
            currency VARCHAR(3) DEFAULT 'USD',
            status VARCHAR(30) DEFAULT 'Draft',
            sync_state VARCHAR(20) DEFAULT 'Synced',
            date TEXT,
            type VARCHAR(20) DEFAULT 'Invoice',
            data JSONB DEFAULT '{}'::jsonb,
            created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            PRIMARY KEY (user_id, id)
        )
    """)
    op.execute("ALTER TABLE invoices ADD COLUMN IF NOT EXISTS sync_state VARCHAR(20) DEFAULT 'Synced'")
    op.execute("ALTER TABLE invoices ADD COLUMN IF NOT EXISTS client_tax_id TEXT")
    op.execute("ALTER TABLE invoices ADD COLUMN IF NOT EXISTS updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now()")
    op.execute("CREATE INDEX IF NOT EXISTS ix_invoices_user_id ON invoices (user_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_invoices_status ON invoices (status)")

    # Legacy rows stored PendingSync in place of the real status
    op.execute("""
        UPDATE invoices SET status = 'Created', sync_state = 'PendingSync'
        WHERE status = 'PendingSync'
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS expenses (
            user_id TEXT NOT NULL,
            id TEXT NOT NULL,
            provider_name TEXT,
            date TEXT,
            total FLOAT DEFAULT 0,
            currency VARCHAR(3) DEFAULT 'USD',
            category TEXT,
            receipt_url TEXT,
            status VARCHAR(30) DEFAULT 'Paid',
            sync_state VARCHAR(20) DEFAULT 'Synced',
            data JSONB DEFAULT '{}'::jsonb,
            created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            PRIMARY KEY (user_id, id)
        )
    """)
    op.execute("ALTER TABLE expenses ADD COLUMN IF NOT EXISTS sync_state VARCHAR(20) DEFAULT 'Synced'")
    op.execute("CREATE INDEX IF NOT EXISTS ix_expenses_user_id ON expenses (user_id)")

    # ── Numbering ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE IF NOT EXISTS document_sequences (
            user_id TEXT NOT NULL,
            doc_type VARCHAR(20) NOT NULL,
            prefix VARCHAR(20) NOT NULL,
            next_number INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            PRIMARY KEY (user_id, doc_type)
        )
    """)

    # ── Registry ────────────────────────────────────────────
    for table in ("clients", "prospects"):
        op.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                user_id TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                tax_id TEXT,
                email TEXT,
                address TEXT,
                phone TEXT,
                tags TEXT,
                notes TEXT,
                created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
                updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
                PRIMARY KEY (user_id, id)
            )
        """)
        for column in ("phone", "tags", "notes"):
            op.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} TEXT")
        op.execute(f"CREATE INDEX IF NOT EXISTS ix_{table}_user_id ON {table} (user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS catalog_items (
            user_id TEXT NOT NULL,
            id TEXT NOT NULL,
            name TEXT NOT NULL,
            price FLOAT NOT NULL,
            description TEXT,
            sku TEXT,
            is_recurring BOOLEAN DEFAULT false,
            created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            PRIMARY KEY (user_id, id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_catalog_items_user_id ON catalog_items (user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS providers (
            user_id TEXT NOT NULL,
            id TEXT NOT NULL,
            name TEXT NOT NULL,
            tax_id TEXT,
            email TEXT,
            address TEXT,
            phone TEXT,
            category TEXT,
            notes TEXT,
            created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now(),
            PRIMARY KEY (user_id, id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_providers_user_id ON providers (user_id)")

    # Earlier builds keyed these tables by id alone; numbers and contact
    # ids are only unique within an account
    for table in ACCOUNT_SCOPED_TABLES:
        op.execute(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {table}_pkey")
        op.execute(f"ALTER TABLE {table} ADD CONSTRAINT {table}_pkey PRIMARY KEY (user_id, id)")

    # ── Audit ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE IF NOT EXISTS audit_logs (
            id VARCHAR(36) NOT NULL PRIMARY KEY,
            user_id TEXT NOT NULL,
            action VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id TEXT,
            details JSONB,
            created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT now() NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_logs_user_id ON audit_logs (user_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_logs_action ON audit_logs (action)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_audit_logs_created_at ON audit_logs (created_at)")


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("providers")
    op.drop_table("catalog_items")
    op.drop_table("prospects")
    op.drop_table("clients")
    op.drop_table("document_sequences")
    op.drop_table("expenses")
    op.drop_table("invoices")
