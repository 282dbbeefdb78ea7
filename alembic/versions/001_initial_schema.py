"""Initial schema for canon, models, runs and comparison results

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB, "postgresql")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "runs" in existing_tables:
        return

    # Canonical content
    op.create_table(
        "bibles",
        sa.Column("bible_id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("language", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "books",
        sa.Column("book_id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("bible_id", sa.Integer, sa.ForeignKey("bibles.bible_id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
    )
    op.create_index("idx_books_bible_position", "books", ["bible_id", "position"])

    op.create_table(
        "chapters",
        sa.Column("chapter_id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("bible_id", sa.Integer, sa.ForeignKey("bibles.bible_id", ondelete="CASCADE"), nullable=False),
        sa.Column("book_id", sa.Integer, sa.ForeignKey("books.book_id", ondelete="CASCADE"), nullable=False),
        sa.Column("chapter_number", sa.Integer, nullable=False),
        sa.Column("reference", sa.Text, nullable=False),
        sa.Column("text_processed", sa.Text, nullable=False),
        sa.Column("hash_processed", sa.String(64), nullable=False),
    )
    op.create_index("idx_chapters_bible_id", "chapters", ["bible_id"])
    op.create_index("idx_chapters_book_number", "chapters", ["book_id", "chapter_number"])

    op.create_table(
        "verses",
        sa.Column("verse_id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("chapter_id", sa.Integer, sa.ForeignKey("chapters.chapter_id", ondelete="CASCADE"), nullable=False),
        sa.Column("bible_id", sa.Integer, nullable=False),
        sa.Column("book_id", sa.Integer, nullable=False),
        sa.Column("chapter_number", sa.Integer, nullable=False),
        sa.Column("verse_number", sa.Integer, nullable=False),
        sa.Column("reference", sa.Text, nullable=False),
        sa.Column("text_raw", sa.Text, nullable=False),
        sa.Column("text_processed", sa.Text, nullable=False),
        sa.Column("hash_processed", sa.String(64), nullable=False),
    )
    op.create_index("idx_verses_chapter_number", "verses", ["chapter_id", "verse_number"])
    op.create_index("idx_verses_bible_id", "verses", ["bible_id"])
    op.create_index("idx_verses_book_id", "verses", ["book_id"])

    # Model registry
    op.create_table(
        "models",
        sa.Column("model_id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("provider", sa.Text, nullable=False),
        sa.Column("display_name", sa.Text, nullable=False),
        sa.Column("model_name", sa.Text),
        sa.Column("api_config", JSONType),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    # Runs and their items
    op.create_table(
        "runs",
        sa.Column("run_id", sa.String(64), primary_key=True),
        sa.Column("model_id", sa.Integer, nullable=False),
        sa.Column("run_type", sa.Text, nullable=False),
        sa.Column("scope", sa.Text, nullable=False),
        sa.Column("scope_ids", JSONType, nullable=False),
        sa.Column("limit", sa.Integer),
        sa.Column("skip", sa.Integer),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("cancel_requested", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("succeeded", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer, nullable=False, server_default="0"),
        sa.Column("pending", sa.Integer, nullable=False, server_default="0"),
        sa.Column("lock_token", sa.String(64)),
        sa.Column("locked_at", sa.DateTime),
        sa.Column("error_summary", JSONType),
        sa.Column("created_by", sa.Text, server_default="admin"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("duration_ms", sa.Integer),
    )
    op.create_index("idx_runs_model_id", "runs", ["model_id"])
    op.create_index("idx_runs_status", "runs", ["status"])

    op.create_table(
        "run_items",
        sa.Column("item_pk", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.String(64), sa.ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False),
        sa.Column("target_type", sa.Text, nullable=False),
        sa.Column("target_id", sa.Integer, nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text),
        sa.Column("result_ref", sa.String(64)),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("run_id", "target_id", name="uq_run_items_run_target"),
    )
    op.create_index("idx_run_items_run_status", "run_items", ["run_id", "status"])

    # Comparison results, append-only
    op.create_table(
        "comparison_results",
        sa.Column("result_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("result_ref", sa.String(64), nullable=False),
        sa.Column("run_id", sa.String(64), nullable=False),
        sa.Column("model_id", sa.Integer, nullable=False),
        sa.Column("target_id", sa.Integer, nullable=False),
        sa.Column("verse_id", sa.Integer, nullable=False),
        sa.Column("chapter_id", sa.Integer, nullable=False),
        sa.Column("book_id", sa.Integer, nullable=False),
        sa.Column("bible_id", sa.Integer, nullable=False),
        sa.Column("attempt", sa.Integer, nullable=False),
        sa.Column("response_raw", sa.Text, nullable=False),
        sa.Column("response_processed", sa.Text, nullable=False),
        sa.Column("hash_raw", sa.String(64), nullable=False),
        sa.Column("hash_processed", sa.String(64), nullable=False),
        sa.Column("hash_match", sa.Boolean, nullable=False),
        sa.Column("fidelity_score", sa.Float, nullable=False),
        sa.Column("diff", JSONType),
        sa.Column("latency_ms", sa.Integer),
        sa.Column("evaluated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_results_verse_id", "comparison_results", ["verse_id"])
    op.create_index("idx_results_run_id", "comparison_results", ["run_id"])
    op.create_index("idx_results_result_ref", "comparison_results", ["result_ref"])


def downgrade() -> None:
    op.drop_table("comparison_results")
    op.drop_table("run_items")
    op.drop_table("runs")
    op.drop_table("models")
    op.drop_table("verses")
    op.drop_table("chapters")
    op.drop_table("books")
    op.drop_table("bibles")
