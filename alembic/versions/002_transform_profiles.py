"""Transform profiles for model output

Revision ID: 002
Revises: 001
Create Date: 2024-02-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB, "postgresql")


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)

    if "transform_profiles" in inspector.get_table_names():
        return

    op.create_table(
        "transform_profiles",
        sa.Column("profile_id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("scope", sa.Text, nullable=False, server_default="model_output"),
        sa.Column("description", sa.Text),
        sa.Column("steps", JSONType, nullable=False),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_transform_profiles_scope", "transform_profiles", ["scope", "is_default"])

    with op.batch_alter_table("models") as batch_op:
        batch_op.add_column(sa.Column("output_profile_id", sa.Integer))
        batch_op.create_foreign_key(
            "fk_models_output_profile",
            "transform_profiles",
            ["output_profile_id"],
            ["profile_id"],
            ondelete="SET NULL",
        )


def downgrade() -> None:
    with op.batch_alter_table("models") as batch_op:
        batch_op.drop_constraint("fk_models_output_profile", type_="foreignkey")
        batch_op.drop_column("output_profile_id")
    op.drop_table("transform_profiles")
