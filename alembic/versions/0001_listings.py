from alembic import op
import sqlalchemy as sa

revision = "0001_listings"
down_revision = None
branch_labels = None
depends_on = None


LEASE_CONSISTENCY_SQL = (
    "(status = 'RESERVED' AND reserved_at IS NOT NULL AND reserved_until IS NOT NULL AND reserved_by IS NOT NULL)"
    " OR "
    "(status <> 'RESERVED' AND reserved_at IS NULL AND reserved_until IS NULL AND reserved_by IS NULL)"
)


def upgrade():
    op.create_table(
        "listings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("reference_number", sa.String(length=40), nullable=False),

        sa.Column("status", sa.String(length=30), nullable=False, server_default="DRAFT"),
        sa.Column("availability", sa.String(length=20), nullable=False, server_default="UNAVAILABLE"),

        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reserved_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reserved_by", sa.String(length=200), nullable=True),

        sa.Column("user_id", sa.String(), nullable=True),

        sa.Column("title", sa.String(length=200), nullable=True),
        sa.Column("manufacturer", sa.String(length=120), nullable=True),
        sa.Column("model", sa.String(length=120), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("condition", sa.String(length=60), nullable=True),
        sa.Column("serial_number", sa.String(length=120), nullable=True),
        sa.Column("asking_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),

        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("sold_to", sa.String(length=200), nullable=True),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),

        sa.UniqueConstraint("reference_number", name="uq_listings_reference_number"),
        sa.CheckConstraint(LEASE_CONSISTENCY_SQL, name="ck_listings_lease_consistency"),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'PENDING_REVIEW', 'PUBLISHED', 'RESERVED', 'SOLD', 'ARCHIVED')",
            name="ck_listings_status",
        ),
        sa.CheckConstraint("availability IN ('AVAILABLE', 'UNAVAILABLE')", name="ck_listings_availability"),
    )

    op.create_index("ix_listings_status_reserved_until", "listings", ["status", "reserved_until"])
    op.create_index("ix_listings_user_id", "listings", ["user_id"])


def downgrade():
    op.drop_index("ix_listings_user_id", table_name="listings")
    op.drop_index("ix_listings_status_reserved_until", table_name="listings")
    op.drop_table("listings")
