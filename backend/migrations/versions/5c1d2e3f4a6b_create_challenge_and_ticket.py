"""create challenge and ticket tables

Revision ID: 5c1d2e3f4a6b
Revises:
Create Date: 2025-10-02 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c1d2e3f4a6b'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    if 'challenge' not in tables:
        op.create_table(
            'challenge',
            sa.Column('id', sa.String(length=32), primary_key=True),
            sa.Column('title', sa.String(length=128), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('owner_id', sa.String(length=64), nullable=False),
            sa.Column('game_id', sa.String(length=32), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('member_ids', sa.JSON(), nullable=False),
            sa.Column('invited_user_ids', sa.JSON(), nullable=False),
            sa.Column('ticket_ids', sa.JSON(), nullable=False),
            sa.Column('max_members', sa.Integer(), nullable=False, server_default='10'),
            sa.Column('game_start_time', sa.DateTime(timezone=True), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        )
        with op.batch_alter_table('challenge') as batch_op:
            batch_op.create_index('ix_challenge_owner_id', ['owner_id'])
            batch_op.create_index('ix_challenge_game_id', ['game_id'])
            batch_op.create_index('ix_challenge_status', ['status'])

    if 'ticket' not in tables:
        op.create_table(
            'ticket',
            sa.Column('id', sa.String(length=32), primary_key=True),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=128), nullable=False),
            sa.Column('game_id', sa.String(length=32), nullable=False),
        )
        with op.batch_alter_table('ticket') as batch_op:
            batch_op.create_index('ix_ticket_user_id', ['user_id'])
            batch_op.create_index('ix_ticket_game_id', ['game_id'])


def downgrade():
    op.drop_table('ticket')
    op.drop_table('challenge')
