"""Match results lookup index

Revision ID: 0002_match_results_lookup
Revises: 0001_initial_schema
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_match_results_lookup"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None

LOOKUP_INDEX = "ix_match_results_lookup"


def _has_table(insp: sa.Inspector, table: str) -> bool:
    return table in insp.get_table_names()


def _index_names(insp: sa.Inspector, table: str) -> set[str]:
    if not _has_table(insp, table):
        return set()
    return {idx["name"] for idx in insp.get_indexes(table)}


def upgrade() -> None:
    insp = sa.inspect(op.get_bind())
    if LOOKUP_INDEX not in _index_names(insp, "match_results"):
        op.create_index(LOOKUP_INDEX, "match_results", ["resume_id", "type", "version"], unique=False)


def downgrade() -> None:
    insp = sa.inspect(op.get_bind())
    if LOOKUP_INDEX in _index_names(insp, "match_results"):
        op.drop_index(LOOKUP_INDEX, table_name="match_results")
