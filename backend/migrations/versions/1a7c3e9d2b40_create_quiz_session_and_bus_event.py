"""create quiz, quiz_session and bus_event tables

Revision ID: 1a7c3e9d2b40
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a7c3e9d2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'quiz',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.String(length=32), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('quiz') as batch_op:
        batch_op.create_index(batch_op.f('ix_quiz_created_at'), ['created_at'], unique=False)

    op.create_table(
        'quiz_session',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('quiz_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('started_at', sa.String(length=32), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('quiz_session') as batch_op:
        batch_op.create_index(batch_op.f('ix_quiz_session_quiz_id'), ['quiz_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_quiz_session_started_at'), ['started_at'], unique=False)

    op.create_table(
        'bus_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel_key', sa.String(length=128), nullable=False),
        sa.Column('event_name', sa.String(length=64), nullable=False),
        sa.Column('sender_id', sa.String(length=64), nullable=True),
        sa.Column('timestamp', sa.Float(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel_key'),
    )
    with op.batch_alter_table('bus_event') as batch_op:
        batch_op.create_index(batch_op.f('ix_bus_event_event_name'), ['event_name'], unique=False)
        batch_op.create_index(batch_op.f('ix_bus_event_timestamp'), ['timestamp'], unique=False)


def downgrade():
    op.drop_table('bus_event')
    op.drop_table('quiz_session')
    op.drop_table('quiz')
