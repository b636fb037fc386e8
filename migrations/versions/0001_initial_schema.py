"""Initial Steward schema: tenants, users, members, attendance, giving, statements, billing.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Idempotent: tables and indexes are only created when missing, so the
migration can be applied to a database that was bootstrapped with
Base.metadata.create_all().
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(name: str) -> bool:
    return inspect(op.get_bind()).has_table(name)


def _create_table_if_missing(name: str, *columns) -> bool:
    if _has_table(name):
        return False
    op.create_table(name, *columns)
    return True


def _create_index_if_missing(name: str, table: str, cols: list[str]) -> None:
    insp = inspect(op.get_bind())
    if not insp.has_table(table):
        return
    existing = {ix["name"] for ix in insp.get_indexes(table)}
    if name not in existing:
        op.create_index(name, table, cols)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    _create_table_if_missing(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_super_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
    )

    _create_table_if_missing(
        "churches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("subdomain", sa.String(64), nullable=False),
        sa.Column("domain", sa.Text(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("state", sa.Text(), nullable=True),
        sa.Column("zip", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("logo_url", sa.Text(), nullable=True),
        sa.Column("primary_color", sa.String(16), nullable=True),
        sa.Column("subscription_status", sa.String(32), nullable=False, server_default="unpaid"),
        sa.Column("subscription_plan", sa.String(32), nullable=False, server_default="basic"),
        sa.Column("trial_ends_at", sa.DateTime(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
        sa.Column("tax_id", sa.String(32), nullable=True),
        sa.Column("is_501c3", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("tax_statement_disclaimer", sa.Text(), nullable=True),
        sa.Column("goods_services_provided", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("goods_services_statement", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("subdomain"),
    )
    _create_index_if_missing("idx_churches_stripe_customer_id", "churches", ["stripe_customer_id"])

    _create_table_if_missing(
        "church_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(32), nullable=False, server_default="viewer"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "church_id", name="uq_church_users_user_church"),
    )
    _create_index_if_missing("idx_church_users_church_id", "church_users", ["church_id"])

    _create_table_if_missing(
        "invitations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("invited_by_user_id", sa.Integer(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["invited_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("code"),
    )
    _create_index_if_missing("idx_invitations_church_email", "invitations", ["church_id", "email"])

    _create_table_if_missing(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("church_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    _create_index_if_missing("idx_audit_events_church_id", "audit_events", ["church_id"])

    _create_table_if_missing(
        "households",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("type", sa.String(16), nullable=True),
        sa.Column("is_non_household", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("person_assigned", sa.Text(), nullable=True),
        sa.Column("ministry_group", sa.Text(), nullable=True),
        sa.Column("address1", sa.Text(), nullable=True),
        sa.Column("address2", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("state", sa.Text(), nullable=True),
        sa.Column("zip", sa.Text(), nullable=True),
        sa.Column("country", sa.Text(), nullable=True),
        sa.Column("alternate_address_begin", sa.Date(), nullable=True),
        sa.Column("alternate_address_end", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
    )
    _create_index_if_missing("idx_households_church_id", "households", ["church_id"])
    _create_index_if_missing("idx_households_name", "households", ["name"])

    _create_table_if_missing(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("household_id", sa.Integer(), nullable=True),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("middle_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("suffix", sa.Text(), nullable=True),
        sa.Column("preferred_name", sa.Text(), nullable=True),
        sa.Column("maiden_name", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("sex", sa.String(16), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("email1", sa.String(320), nullable=True),
        sa.Column("email2", sa.String(320), nullable=True),
        sa.Column("phone_home", sa.Text(), nullable=True),
        sa.Column("phone_cell1", sa.Text(), nullable=True),
        sa.Column("phone_cell2", sa.Text(), nullable=True),
        sa.Column("baptism_date", sa.Date(), nullable=True),
        sa.Column("confirmation_date", sa.Date(), nullable=True),
        sa.Column("received_by", sa.String(32), nullable=True),
        sa.Column("date_received", sa.Date(), nullable=True),
        sa.Column("removed_by", sa.String(32), nullable=True),
        sa.Column("date_removed", sa.Date(), nullable=True),
        sa.Column("deceased_date", sa.Date(), nullable=True),
        sa.Column("membership_code", sa.String(32), nullable=True),
        sa.Column("envelope_number", sa.Integer(), nullable=True),
        sa.Column("participation", sa.String(16), nullable=False, server_default="active"),
        sa.Column("sequence", sa.String(16), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["household_id"], ["households.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("church_id", "email1", name="uq_members_church_email1"),
    )
    _create_index_if_missing("idx_members_church_id", "members", ["church_id"])
    _create_index_if_missing("idx_members_household_id", "members", ["household_id"])
    _create_index_if_missing("idx_members_last_first", "members", ["last_name", "first_name"])
    _create_index_if_missing("idx_members_envelope_number", "members", ["church_id", "envelope_number"])

    _create_table_if_missing(
        "membership_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("field_changed", sa.String(64), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
        sa.Column("changed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["changed_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    _create_index_if_missing("idx_membership_history_member_id", "membership_history", ["member_id"])

    _create_table_if_missing(
        "services",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("service_type", sa.String(32), nullable=False),
        sa.Column("service_time", sa.String(16), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("church_id", "service_date", "service_type", name="uq_services_church_date_type"),
    )
    _create_index_if_missing("idx_services_church_date", "services", ["church_id", "service_date"])

    _create_table_if_missing(
        "attendance",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("attended", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("took_communion", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("member_id", "service_id", name="uq_attendance_member_service"),
    )
    _create_index_if_missing("idx_attendance_service_id", "attendance", ["service_id"])

    _create_table_if_missing(
        "giving_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("church_id", "name", name="uq_giving_categories_church_name"),
    )

    _create_table_if_missing(
        "giving",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("date_given", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("service_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="SET NULL"),
    )
    _create_index_if_missing("idx_giving_member_id", "giving", ["member_id"])
    _create_index_if_missing("idx_giving_date_given", "giving", ["date_given"])
    _create_index_if_missing("idx_giving_service_id", "giving", ["service_id"])

    _create_table_if_missing(
        "giving_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("giving_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["giving_id"], ["giving.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["giving_categories.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("giving_id", "category_id", name="uq_giving_items_giving_category"),
    )
    _create_index_if_missing("idx_giving_items_category_id", "giving_items", ["category_id"])

    _create_table_if_missing(
        "giving_statements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("household_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("statement_number", sa.String(64), nullable=False),
        sa.Column("generated_at", sa.DateTime(), nullable=False),
        sa.Column("generated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("sent_by_user_id", sa.Integer(), nullable=True),
        sa.Column("email_status", sa.String(16), nullable=True),
        sa.Column("email_error", sa.Text(), nullable=True),
        sa.Column("pdf_storage_key", sa.Text(), nullable=True),
        sa.Column("preview_only", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["household_id"], ["households.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["generated_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["sent_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("household_id", "year", name="uq_giving_statements_household_year"),
    )
    _create_index_if_missing("idx_giving_statements_church_year", "giving_statements", ["church_id", "year"])

    _create_table_if_missing(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("church_id", sa.Integer(), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("plan", sa.String(32), nullable=False),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["church_id"], ["churches.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("stripe_subscription_id"),
    )
    _create_index_if_missing("idx_subscriptions_church_id", "subscriptions", ["church_id"])


def downgrade() -> None:
    for table in (
        "subscriptions",
        "giving_statements",
        "giving_items",
        "giving",
        "giving_categories",
        "attendance",
        "services",
        "membership_history",
        "members",
        "households",
        "audit_events",
        "invitations",
        "church_users",
        "churches",
        "users",
    ):
        if _has_table(table):
            op.drop_table(table)
