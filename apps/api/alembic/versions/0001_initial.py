"""Initial schema: templates, forms, responses, credentials, cases.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Creates:
- form_templates
- cases, case_verification_checks, case_activities, case_notes
- forms, form_responses
- oauth_credentials
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # form_templates
    # ==========================================================================
    op.create_table(
        'form_templates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('fields', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('is_default', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('usage_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_form_templates_active', 'form_templates', ['is_active'])

    # ==========================================================================
    # cases (before forms and responses, which reference it)
    # ==========================================================================
    op.create_table(
        'cases',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('case_number', sa.String(20), nullable=False),
        sa.Column('candidate_name', sa.String(255), nullable=False),
        sa.Column('candidate_email', sa.String(255), nullable=True),
        sa.Column('candidate_phone', sa.String(50), nullable=True),
        sa.Column('candidate_profile', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(40), server_default=sa.text("'intake'"), nullable=False),
        sa.Column('priority', sa.String(20), server_default=sa.text("'medium'"), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('assigned_to', sa.String(255), nullable=True),
        sa.Column('sla_deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sla_breached', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('sla_breached_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verification_status', sa.String(20), server_default=sa.text("'not_started'"), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('case_number'),
    )
    op.create_index('idx_cases_status', 'cases', ['status'])
    op.create_index('idx_cases_sla', 'cases', ['sla_deadline'])

    op.create_table(
        'case_verification_checks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('case_id', sa.Uuid(), nullable=False),
        sa.Column('check_name', sa.String(20), nullable=False),
        sa.Column('verified', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_by', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('case_id', 'check_name', name='uq_case_verification_check'),
    )

    op.create_table(
        'case_activities',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('case_id', sa.Uuid(), nullable=False),
        sa.Column('activity_type', sa.String(40), nullable=False),
        sa.Column('actor', sa.String(255), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_case_activities_case', 'case_activities', ['case_id', 'created_at'])

    op.create_table(
        'case_notes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('case_id', sa.Uuid(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('author', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_case_notes_case', 'case_notes', ['case_id', 'created_at'])

    # ==========================================================================
    # forms
    # ==========================================================================
    op.create_table(
        'forms',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('template_id', sa.Uuid(), nullable=True),
        sa.Column('case_id', sa.Uuid(), nullable=True),
        sa.Column('fields', sa.JSON(), nullable=False),
        sa.Column('candidate_email', sa.String(255), nullable=False),
        sa.Column('candidate_name', sa.String(255), nullable=True),
        sa.Column('issuer_email', sa.String(255), nullable=False),
        sa.Column('provider', sa.String(20), nullable=True),
        sa.Column('reply_subject', sa.String(255), nullable=True),
        sa.Column('email_message_id', sa.String(255), nullable=True),
        sa.Column('send_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'created'"), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['template_id'], ['form_templates.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index('idx_forms_status_expires', 'forms', ['status', 'expires_at'])
    op.create_index('idx_forms_issuer_provider', 'forms', ['issuer_email', 'provider'])
    op.create_index('idx_forms_case', 'forms', ['case_id'])

    op.create_table(
        'form_responses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('form_token', sa.String(64), nullable=False),
        sa.Column('answers', sa.JSON(), nullable=False),
        sa.Column('origin', sa.String(10), nullable=False),
        sa.Column('source_address', sa.String(255), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('candidate_name', sa.String(255), nullable=True),
        sa.Column('candidate_email', sa.String(255), nullable=True),
        sa.Column('candidate_profile', sa.JSON(), nullable=True),
        sa.Column('processed', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('processed_by', sa.String(255), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('case_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['form_token'], ['forms.token'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        # One response per form: the backstop for the completion compare-and-swap
        sa.UniqueConstraint('form_token'),
    )
    op.create_index('idx_form_responses_processed', 'form_responses', ['processed'])
    op.create_index('idx_form_responses_case', 'form_responses', ['case_id'])

    # ==========================================================================
    # oauth_credentials
    # ==========================================================================
    op.create_table(
        'oauth_credentials',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('identity', sa.String(255), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scopes', sa.Text(), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identity', 'provider', name='uq_oauth_credentials_identity_provider'),
    )


def downgrade() -> None:
    op.drop_table('oauth_credentials')
    op.drop_index('idx_form_responses_case', table_name='form_responses')
    op.drop_index('idx_form_responses_processed', table_name='form_responses')
    op.drop_table('form_responses')
    op.drop_index('idx_forms_case', table_name='forms')
    op.drop_index('idx_forms_issuer_provider', table_name='forms')
    op.drop_index('idx_forms_status_expires', table_name='forms')
    op.drop_table('forms')
    op.drop_index('idx_case_notes_case', table_name='case_notes')
    op.drop_table('case_notes')
    op.drop_index('idx_case_activities_case', table_name='case_activities')
    op.drop_table('case_activities')
    op.drop_table('case_verification_checks')
    op.drop_index('idx_cases_sla', table_name='cases')
    op.drop_index('idx_cases_status', table_name='cases')
    op.drop_table('cases')
    op.drop_index('idx_form_templates_active', table_name='form_templates')
    op.drop_table('form_templates')
