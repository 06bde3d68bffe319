"""compliance risk tables (stat configs, datasets, scans, reports)

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    stat_type = sa.Enum('PT', 'MIN_WAGE', name='statconfig_type')

    op.create_table(
        'stat_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('type', stat_type, nullable=False),
        sa.Column('key', sa.String(length=80), nullable=False),
        sa.Column('scope_state', sa.String(length=10), nullable=True),
        sa.Column('priority', sa.Integer(), server_default='100', nullable=False),
        sa.Column('value_json', sa.JSON(), nullable=False),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_statcfg_resolve', 'stat_configs',
                    ['type', 'scope_state', 'effective_from', 'effective_to', 'priority'], unique=False)

    op.create_table(
        'compliance_datasets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scope_key', sa.String(length=7), nullable=False),
        sa.Column('run_id', sa.String(length=64), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_compliance_datasets_scope_key', 'compliance_datasets', ['scope_key'], unique=True)
    op.create_index('ix_compliance_datasets_run_id', 'compliance_datasets', ['run_id'], unique=False)

    op.create_table(
        'compliance_scans',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scan_uid', sa.String(length=32), nullable=False, unique=True),
        sa.Column('scope_key', sa.String(length=7), nullable=False),
        sa.Column('run_id', sa.String(length=64), nullable=True),
        sa.Column('reasons', sa.JSON(), nullable=True),
        sa.Column('employee_count', sa.Integer(), nullable=True),
        sa.Column('excluded_count', sa.Integer(), nullable=True),
        sa.Column('violation_count', sa.Integer(), nullable=True),
        sa.Column('anomaly_count', sa.Integer(), nullable=True),
        sa.Column('summary', sa.JSON(), nullable=True),
        sa.Column('anomalies', sa.JSON(), nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_compliance_scans_scope_key', 'compliance_scans', ['scope_key'], unique=False)

    op.create_table(
        'compliance_reports',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scan_id', sa.Integer(), sa.ForeignKey('compliance_scans.id', ondelete='SET NULL'), nullable=True),
        sa.Column('scope_key', sa.String(length=7), nullable=False),
        sa.Column('employee_id', sa.String(length=64), nullable=False),
        sa.Column('employee_name', sa.String(length=200), nullable=True),
        sa.Column('risk_score', sa.Integer(), nullable=False),
        sa.Column('risk_level', sa.String(length=10), nullable=False),
        sa.Column('violation_count', sa.Integer(), nullable=False),
        sa.Column('violations', sa.JSON(), nullable=True),
        sa.Column('category_scores', sa.JSON(), nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('scope_key', 'employee_id', name='uq_compliance_report_scope_emp'),
    )
    op.create_index('ix_compliance_reports_scope_key', 'compliance_reports', ['scope_key'], unique=False)
    op.create_index('ix_compliance_report_level', 'compliance_reports', ['scope_key', 'risk_level'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_compliance_report_level', table_name='compliance_reports')
    op.drop_index('ix_compliance_reports_scope_key', table_name='compliance_reports')
    op.drop_table('compliance_reports')
    op.drop_index('ix_compliance_scans_scope_key', table_name='compliance_scans')
    op.drop_table('compliance_scans')
    op.drop_index('ix_compliance_datasets_run_id', table_name='compliance_datasets')
    op.drop_index('ix_compliance_datasets_scope_key', table_name='compliance_datasets')
    op.drop_table('compliance_datasets')
    op.drop_index('ix_statcfg_resolve', table_name='stat_configs')
    op.drop_table('stat_configs')
    sa.Enum(name='statconfig_type').drop(op.get_bind(), checkfirst=True)
