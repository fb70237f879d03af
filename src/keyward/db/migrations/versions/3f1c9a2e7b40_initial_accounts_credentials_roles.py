"""Initial schema: accounts, roles, account_roles, credentials

Learn: roles is seeded with the two built-in roles here rather than at
app startup, so a freshly migrated database can have an admin granted
(keyward create-admin) before the API has ever run.

Revision ID: 3f1c9a2e7b40
Revises:
Create Date: 2026-10-19 09:12:44.120391
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2e7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    roles = op.create_table(
        'roles',
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('name'),
    )
    op.bulk_insert(roles, [
        {'name': 'admin', 'description': 'Manage accounts, roles and permissions'},
        {'name': 'user', 'description': 'Regular account'},
    ])

    op.create_table(
        'account_roles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role'], ['roles.name']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'role', name='uq_account_roles'),
    )

    # ─── WebAuthn credentials ────────────────────────────
    op.create_table(
        'credentials',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('credential_id', sa.LargeBinary(), nullable=False),
        sa.Column('public_key', sa.LargeBinary(), nullable=False),
        sa.Column('attestation_type', sa.String(length=50), nullable=False),
        sa.Column('transports', sa.JSON(), nullable=False),
        sa.Column('sign_count', sa.BigInteger(), nullable=False),
        sa.Column('aaguid', sa.LargeBinary(), nullable=False),
        sa.Column('attachment', sa.String(length=20), nullable=False),
        sa.Column('clone_warning', sa.Boolean(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'credential_id', name='uq_credentials_account_credential'),
    )
    op.create_index('idx_credentials_account', 'credentials', ['account_id'])


def downgrade() -> None:
    op.drop_index('idx_credentials_account', table_name='credentials')
    op.drop_table('credentials')
    op.drop_table('account_roles')
    op.drop_table('roles')
    op.drop_table('accounts')
