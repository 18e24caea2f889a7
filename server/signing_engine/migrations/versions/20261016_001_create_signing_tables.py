"""Create envelope signing tables

Revision ID: 20261016_001_create_signing_tables
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261016_001_create_signing_tables'
down_revision = None
branch_labels = None
depends_on = None

signing_mode = sa.Enum('PARALLEL', 'SEQUENTIAL', 'MIXED', name='signingmode')
envelope_status = sa.Enum(
    'DRAFT', 'SENT', 'VIEWED', 'PARTIALLY_SIGNED', 'COMPLETED', 'DECLINED', 'VOIDED', 'EXPIRED',
    name='envelopestatus',
)
recipient_role = sa.Enum('SIGNER', 'CC', 'CERTIFIED_DELIVERY', name='recipientrole')
recipient_status = sa.Enum('PENDING', 'SENT', 'DELIVERED', 'VIEWED', 'SIGNED', 'DECLINED', name='recipientstatus')
contact_source = sa.Enum('MANUAL', 'IMPORT', 'SIGNATURE_EVENT', name='contactsource')
contact_status = sa.Enum('PROSPECT', 'ACTIVE', 'ARCHIVED', name='contactstatus')
filing_destination = sa.Enum('ORG_VAULT', 'CONTACT_VAULT', 'EMAIL', name='filingdestination')
event_status = sa.Enum('PENDING', 'DISPATCHED', 'FAILED', name='eventstatus')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # Create envelopes table
    op.create_table('envelopes',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('team_id', sa.String(length=36), nullable=False),
        sa.Column('created_by_id', sa.String(length=36), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('source_file', sa.Text(), nullable=True),
        sa.Column('source_file_name', sa.String(length=255), nullable=True),
        sa.Column('signing_mode', signing_mode, nullable=False),
        sa.Column('status', envelope_status, nullable=False),
        sa.Column('email_subject', sa.String(length=255), nullable=True),
        sa.Column('email_message', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_reason', sa.Text(), nullable=True),
        sa.Column('declined_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('declined_by', sa.String(length=320), nullable=True),
        sa.Column('filed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reminder_days', sa.Integer(), server_default='3', nullable=False),
        sa.Column('max_reminders', sa.Integer(), server_default='3', nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_envelopes')),
    )
    op.create_index(op.f('ix_envelopes_team_id'), 'envelopes', ['team_id'], unique=False)
    op.create_index(op.f('ix_envelopes_status'), 'envelopes', ['status'], unique=False)

    # Create envelope_recipients table
    op.create_table('envelope_recipients',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('envelope_id', sa.String(length=36), nullable=False),
        sa.Column('role', recipient_role, nullable=False),
        sa.Column('signing_order', sa.Integer(), nullable=False),
        sa.Column('signing_token', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', recipient_status, nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('viewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('signed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('declined_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('declined_reason', sa.Text(), nullable=True),
        sa.Column('reminder_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_reminder_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('signature_type', sa.String(length=16), nullable=True),
        sa.Column('signature_image', sa.Text(), nullable=True),
        sa.Column('field_values', sa.JSON(), nullable=True),
        sa.Column('consent_record', sa.JSON(), nullable=True),
        sa.Column('signature_checksum', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(
            ['envelope_id'], ['envelopes.id'],
            name=op.f('fk_envelope_recipients_envelope_id_envelopes'), ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_envelope_recipients')),
    )
    op.create_index(op.f('ix_envelope_recipients_envelope_id'), 'envelope_recipients', ['envelope_id'], unique=False)
    op.create_index(op.f('ix_envelope_recipients_signing_token'), 'envelope_recipients', ['signing_token'], unique=True)

    # Create contacts table
    op.create_table('contacts',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('team_id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('first_name', sa.String(length=120), nullable=False),
        sa.Column('last_name', sa.String(length=120), nullable=False),
        sa.Column('source', contact_source, nullable=False),
        sa.Column('status', contact_status, nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_contacts')),
        sa.UniqueConstraint('team_id', 'email', name='uq_contacts_team_email'),
    )
    op.create_index(op.f('ix_contacts_team_id'), 'contacts', ['team_id'], unique=False)

    # Create document_filings table
    op.create_table('document_filings',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('envelope_id', sa.String(length=36), nullable=False),
        sa.Column('team_id', sa.String(length=36), nullable=False),
        sa.Column('destination_type', filing_destination, nullable=False),
        sa.Column('destination_key', sa.String(length=512), nullable=False),
        sa.Column('contact_id', sa.String(length=36), nullable=True),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('source_file', sa.Text(), nullable=True),
        sa.Column('audit_hash', sa.String(length=64), nullable=False),
        sa.Column('filed_by_id', sa.String(length=36), nullable=True),
        sa.ForeignKeyConstraint(
            ['envelope_id'], ['envelopes.id'],
            name=op.f('fk_document_filings_envelope_id_envelopes'), ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['contact_id'], ['contacts.id'],
            name=op.f('fk_document_filings_contact_id_contacts'), ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_document_filings')),
        sa.UniqueConstraint('envelope_id', 'destination_type', 'destination_key', name='uq_document_filings_destination'),
    )
    op.create_index(op.f('ix_document_filings_envelope_id'), 'document_filings', ['envelope_id'], unique=False)
    op.create_index(op.f('ix_document_filings_team_id'), 'document_filings', ['team_id'], unique=False)

    # Create audit_logs table
    op.create_table('audit_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('event_type', sa.String(length=80), nullable=False),
        sa.Column('team_id', sa.String(length=36), nullable=True),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('resource_type', sa.String(length=60), nullable=False),
        sa.Column('resource_id', sa.String(length=36), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_audit_logs')),
    )
    op.create_index(op.f('ix_audit_logs_event_type'), 'audit_logs', ['event_type'], unique=False)
    op.create_index(op.f('ix_audit_logs_team_id'), 'audit_logs', ['team_id'], unique=False)
    op.create_index(op.f('ix_audit_logs_resource_id'), 'audit_logs', ['resource_id'], unique=False)

    # Create event_outbox table
    op.create_table('event_outbox',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('envelope_id', sa.String(length=36), nullable=True),
        sa.Column('event_type', sa.String(length=80), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', event_status, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('next_run_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('channel', sa.String(length=40), nullable=False),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ['envelope_id'], ['envelopes.id'],
            name=op.f('fk_event_outbox_envelope_id_envelopes'), ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_event_outbox')),
    )
    op.create_index(op.f('ix_event_outbox_envelope_id'), 'event_outbox', ['envelope_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_event_outbox_envelope_id'), table_name='event_outbox')
    op.drop_table('event_outbox')
    op.drop_index(op.f('ix_audit_logs_resource_id'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_team_id'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_event_type'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_document_filings_team_id'), table_name='document_filings')
    op.drop_index(op.f('ix_document_filings_envelope_id'), table_name='document_filings')
    op.drop_table('document_filings')
    op.drop_index(op.f('ix_contacts_team_id'), table_name='contacts')
    op.drop_table('contacts')
    op.drop_index(op.f('ix_envelope_recipients_signing_token'), table_name='envelope_recipients')
    op.drop_index(op.f('ix_envelope_recipients_envelope_id'), table_name='envelope_recipients')
    op.drop_table('envelope_recipients')
    op.drop_index(op.f('ix_envelopes_status'), table_name='envelopes')
    op.drop_index(op.f('ix_envelopes_team_id'), table_name='envelopes')
    op.drop_table('envelopes')
    bind = op.get_bind()
    for enum_type in (
        event_status, filing_destination, contact_status, contact_source,
        recipient_status, recipient_role, envelope_status, signing_mode,
    ):
        enum_type.drop(bind, checkfirst=True)
