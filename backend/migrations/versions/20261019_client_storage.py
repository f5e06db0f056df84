"""Create client_storage

Revision ID: 20261019_client_storage
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_client_storage"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "client_storage",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "key", name="uq_client_storage_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("client_storage", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_client_storage_client_id"), ["client_id"], unique=False)


def downgrade():
    with op.batch_alter_table("client_storage", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_client_storage_client_id"))
    op.drop_table("client_storage")
