"""encrypt churches.tax_id and members.date_of_birth at rest

Revision ID: 0002_encrypt_sensitive_fields
Revises: 0001_initial
Create Date: 2026-10-19

Both columns become TEXT so they can hold "enc_v1_..." ciphertext. When
ENCRYPTION_KEY is set, existing plaintext values are encrypted in place;
otherwise they are left as-is (still readable) and get encrypted on next save.
"""
import logging
import os
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

from app.steward.encryption import EncryptionKeyError, encrypt, is_encrypted, load_key


# revision identifiers, used by Alembic.
revision: str = "0002_encrypt_sensitive_fields"
down_revision: Union[str, Sequence[str], None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

logger = logging.getLogger("alembic.runtime.migration")

COLUMNS = (
    ("churches", "tax_id", sa.String(32)),
    ("members", "date_of_birth", sa.Date()),
)


def _widen_to_text(insp, table: str, column: str, existing_type) -> None:
    cols = {c["name"]: c for c in insp.get_columns(table)}
    if column not in cols or isinstance(cols[column]["type"], sa.Text):
        return
    with op.batch_alter_table(table) as batch_op:
        batch_op.alter_column(
            column,
            type_=sa.Text(),
            existing_type=existing_type,
            existing_nullable=True,
            postgresql_using=f"{column}::text",
        )


def _encrypt_existing(bind, table: str, column: str, key: bytes) -> int:
    rows = bind.execute(sa.text(f"SELECT id, {column} FROM {table} WHERE {column} IS NOT NULL")).fetchall()
    n = 0
    for row_id, value in rows:
        value = str(value)
        if value == "" or is_encrypted(value):
            continue
        bind.execute(
            sa.text(f"UPDATE {table} SET {column} = :v WHERE id = :id"),
            {"v": encrypt(value, key=key), "id": row_id},
        )
        n += 1
    return n


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)

    for table, column, existing_type in COLUMNS:
        if insp.has_table(table):
            _widen_to_text(insp, table, column, existing_type)

    try:
        key = load_key(os.environ.get("ENCRYPTION_KEY"))
    except EncryptionKeyError as e:
        logger.warning("Skipping encryption of existing values: %s", e)
        return

    for table, column, _ in COLUMNS:
        if insp.has_table(table):
            n = _encrypt_existing(bind, table, column, key)
            logger.info("Encrypted %s existing %s.%s values", n, table, column)


def downgrade() -> None:
    # Ciphertext does not fit the old column types; columns stay TEXT.
    pass
