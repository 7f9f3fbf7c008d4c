"""Add submission claim to fiscal documents

Revision ID: 20261020_submission_claim
Revises: 20261019_initial
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_submission_claim"
down_revision = "20261019_initial"
branch_labels = None
depends_on = None


def upgrade():
    for table in ("invoices", "credit_notes"):
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.add_column(sa.Column("submission_claimed_at", sa.DateTime(timezone=True), nullable=True))


def downgrade():
    for table in ("credit_notes", "invoices"):
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.drop_column("submission_claimed_at")
