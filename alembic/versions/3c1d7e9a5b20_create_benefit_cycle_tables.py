"""create benefit cycle tables

Revision ID: 3c1d7e9a5b20
Revises:
Create Date: 2025-06-23 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c1d7e9a5b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _benefit_terms_columns() -> list[sa.Column]:
    return [
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False),
        sa.Column("max_amount", sa.Float(), nullable=True),
        sa.Column("frequency", sa.String(length=20), nullable=False),
        sa.Column("cycle_alignment", sa.String(length=20), nullable=True),
        sa.Column("fixed_cycle_start_month", sa.Integer(), nullable=True),
        sa.Column("fixed_cycle_duration_months", sa.Integer(), nullable=True),
        sa.Column("occurrences_in_cycle", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("settings", sa.Text(), nullable=True),
        sa.Column("created_at", sa.String(length=24), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_users_email"), ["email"], unique=True)

    op.create_table(
        "card_products",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("issuer", sa.String(length=50), nullable=False),
        sa.Column("annual_fee", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.String(length=24), nullable=True),
        sa.Column("updated_at", sa.String(length=24), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("card_products", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_card_products_name"), ["name"], unique=True)

    op.create_table(
        "card_product_benefits",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("card_product_id", sa.String(length=36), nullable=False),
        *_benefit_terms_columns(),
        sa.ForeignKeyConstraint(["card_product_id"], ["card_products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("card_product_benefits", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_card_product_benefits_card_product_id"), ["card_product_id"], unique=False)

    op.create_table(
        "account_cards",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("opened_date", sa.String(length=10), nullable=True),
        sa.Column("created_at", sa.String(length=24), nullable=True),
        sa.Column("updated_at", sa.String(length=24), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("account_cards", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_account_cards_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_account_cards_name"), ["name"], unique=False)

    op.create_table(
        "benefits",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("account_card_id", sa.String(length=36), nullable=False),
        *_benefit_terms_columns(),
        sa.Column("start_date", sa.String(length=24), nullable=True),
        sa.Column("end_date", sa.String(length=24), nullable=True),
        sa.Column("created_at", sa.String(length=24), nullable=True),
        sa.ForeignKeyConstraint(["account_card_id"], ["account_cards.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("benefits", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_benefits_account_card_id"), ["account_card_id"], unique=False)

    op.create_table(
        "benefit_statuses",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("benefit_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("cycle_start_date", sa.String(length=24), nullable=False),
        sa.Column("cycle_end_date", sa.String(length=24), nullable=False),
        sa.Column("occurrence_index", sa.Integer(), nullable=False),
        sa.Column("is_completed", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.String(length=24), nullable=True),
        sa.Column("is_not_usable", sa.Integer(), nullable=True),
        sa.Column("used_amount", sa.Float(), nullable=True),
        sa.Column("created_at", sa.String(length=24), nullable=True),
        sa.Column("updated_at", sa.String(length=24), nullable=True),
        sa.ForeignKeyConstraint(["benefit_id"], ["benefits.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "benefit_id", "user_id", "cycle_start_date", "occurrence_index", name="uq_benefit_status_cycle"
        ),
    )
    with op.batch_alter_table("benefit_statuses", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_benefit_statuses_benefit_id"), ["benefit_id"], unique=False)
        batch_op.create_index("ix_benefit_statuses_user_end", ["user_id", "cycle_end_date"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table("benefit_statuses", schema=None) as batch_op:
        batch_op.drop_index("ix_benefit_statuses_user_end")
        batch_op.drop_index(batch_op.f("ix_benefit_statuses_benefit_id"))
    op.drop_table("benefit_statuses")

    with op.batch_alter_table("benefits", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_benefits_account_card_id"))
    op.drop_table("benefits")

    with op.batch_alter_table("account_cards", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_account_cards_name"))
        batch_op.drop_index(batch_op.f("ix_account_cards_user_id"))
    op.drop_table("account_cards")

    with op.batch_alter_table("card_product_benefits", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_card_product_benefits_card_product_id"))
    op.drop_table("card_product_benefits")

    with op.batch_alter_table("card_products", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_card_products_name"))
    op.drop_table("card_products")

    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_users_email"))
    op.drop_table("users")
