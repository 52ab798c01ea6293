"""Create flow and environment tables

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-18 12:00:00.000000

This migration:
1. Creates the flow table (graph stored as JSONB nodes/edges)
2. Creates the environment table (named variable sets)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'a0b1c2d3e4f5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # === 1. flow ===
    op.create_table(
        'flow',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('nodes', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('edges', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('variables', postgresql.JSONB, nullable=False, server_default='{}'),
    )
    op.create_index('idx_flow_name', 'flow', ['name'])
    op.create_index('idx_flow_created_at', 'flow', ['created_at'])

    # === 2. environment ===
    op.create_table(
        'environment',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('variables', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.UniqueConstraint('name', name='uq_environment_name'),
    )


def downgrade():
    op.drop_table('environment')
    op.drop_index('idx_flow_created_at', table_name='flow')
    op.drop_index('idx_flow_name', table_name='flow')
    op.drop_table('flow')
