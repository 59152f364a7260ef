"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates the account, catalog, submission and audit tables for the HSE
compliance tracker. Enum columns are VARCHAR with CHECK constraints so the
same migration runs on Postgres and SQLite.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values, name):
    return sa.Enum(*values, name=name, native_enum=False, length=20)


def upgrade() -> None:
    # Users (auth accounts)
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('role_hint', sa.String(20)),
        sa.Column('invited_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_login', sa.DateTime(timezone=True)),
    )

    # Contractors
    op.create_table('contractors',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Profiles
    op.create_table('profiles',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, unique=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('role', _enum('admin', 'contractor', name='userrole'), nullable=False),
        sa.Column('contractor_id', sa.Integer(), sa.ForeignKey('contractors.id'), nullable=True),
        sa.Column('status', _enum('invited', 'active', 'deactivated', name='profilestatus'), nullable=False),
        sa.Column('note', sa.Text()),
        sa.Column('invited_by', sa.Integer(), nullable=True),
        sa.Column('invited_at', sa.DateTime(timezone=True)),
        sa.Column('activated_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Allow-list
    op.create_table('allowed_users_email',
        sa.Column('email', sa.String(255), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Document types
    op.create_table('doc_types',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('code', sa.String(50), nullable=True, unique=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(255), nullable=False, index=True),
        sa.Column('is_critical', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('weight', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Requirements
    op.create_table('contractor_requirements',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('contractor_id', sa.Integer(), sa.ForeignKey('contractors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('doc_type_id', sa.Integer(), sa.ForeignKey('doc_types.id'), nullable=False),
        sa.Column('required_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('planned_due_date', sa.Date(), nullable=True),
        sa.UniqueConstraint('contractor_id', 'doc_type_id', name='uq_requirement_contractor_doc_type'),
        sa.CheckConstraint('required_count >= 0', name='ck_requirement_required_count'),
    )

    # Submissions
    op.create_table('submissions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('contractor_id', sa.Integer(), sa.ForeignKey('contractors.id'), nullable=False, index=True),
        sa.Column('doc_type_id', sa.Integer(), sa.ForeignKey('doc_types.id'), nullable=False, index=True),
        sa.Column('status', _enum('prepared', 'submitted', 'approved', 'revision', 'rejected',
                                  name='submissionstatus'), nullable=False),
        sa.Column('cnt', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('note', sa.Text()),
        sa.Column('filename', sa.String(500)),
        sa.Column('content_type', sa.String(100)),
        sa.Column('storage_path', sa.String(1000)),
        sa.Column('sha256', sa.String(64)),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.CheckConstraint('cnt >= 1', name='ck_submission_cnt'),
    )
    op.create_index('ix_submissions_contractor_doc_type', 'submissions', ['contractor_id', 'doc_type_id'])

    # Audit logs
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(100), index=True),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
        sa.Column('user_agent', sa.Text()),
    )
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])


def downgrade() -> None:
    op.drop_index('ix_audit_logs_entity', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_submissions_contractor_doc_type', table_name='submissions')
    op.drop_table('submissions')
    op.drop_table('contractor_requirements')
    op.drop_table('doc_types')
    op.drop_table('allowed_users_email')
    op.drop_table('profiles')
    op.drop_table('contractors')
    op.drop_table('users')
