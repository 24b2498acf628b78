"""outbox and inbox tables

Revision ID: a1c3e5f70b21
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f70b21'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'outbox_messages',
        sa.Column('event_name', sa.String(length=100), nullable=False, comment='Event discriminator'),
        sa.Column(
            'aggregate_id',
            sa.String(length=100),
            nullable=True,
            comment='Correlation key of the business entity',
        ),
        sa.Column('payload', sa.Text(), nullable=False, comment='Opaque serialized event data'),
        sa.Column(
            'status',
            sa.String(length=20),
            server_default='pending',
            nullable=False,
            comment='pending, sent, or failed',
        ),
        sa.Column(
            'attempts',
            sa.Integer(),
            server_default='0',
            nullable=False,
            comment='Processor-level delivery attempts',
        ),
        sa.Column(
            'max_attempts',
            sa.Integer(),
            server_default='5',
            nullable=False,
            comment='Attempts allowed before the message is dead-lettered',
        ),
        sa.Column(
            'next_attempt_at',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='Earliest time of the next delivery attempt',
        ),
        sa.Column(
            'sent_at',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='When the message was delivered',
        ),
        sa.Column('last_error', sa.Text(), nullable=True, comment='Last delivery error'),
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp of record creation',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp of last update',
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'failed')",
            name=op.f('ck_outbox_messages_status'),
        ),
        sa.CheckConstraint('attempts >= 0', name=op.f('ck_outbox_messages_attempts_non_negative')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_outbox_messages')),
    )
    op.create_index(
        op.f('ix_outbox_messages_event_name'),
        'outbox_messages',
        ['event_name'],
        unique=False,
    )
    op.create_index(
        'ix_outbox_messages_dispatch',
        'outbox_messages',
        ['status', 'next_attempt_at', 'created_at'],
        unique=False,
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        'ix_outbox_messages_aggregate',
        'outbox_messages',
        ['aggregate_id', 'created_at'],
        unique=False,
    )

    op.create_table(
        'inbox_records',
        sa.Column('id', sa.String(length=255), nullable=False, comment='Event id'),
        sa.Column(
            'consumer',
            sa.String(length=100),
            server_default='default',
            nullable=False,
            comment='Consumer that processed the event',
        ),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column(
            'processed_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint('id', 'consumer', name=op.f('pk_inbox_records')),
    )
    op.create_index(
        op.f('ix_inbox_records_processed_at'),
        'inbox_records',
        ['processed_at'],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(op.f('ix_inbox_records_processed_at'), table_name='inbox_records')
    op.drop_table('inbox_records')
    op.drop_index('ix_outbox_messages_aggregate', table_name='outbox_messages')
    op.drop_index(
        'ix_outbox_messages_dispatch',
        table_name='outbox_messages',
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.drop_index(op.f('ix_outbox_messages_event_name'), table_name='outbox_messages')
    op.drop_table('outbox_messages')
