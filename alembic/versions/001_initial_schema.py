"""Initial schema

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def create_enum_if_not_exists(enum_name, enum_values):
    """Create PostgreSQL ENUM type if it doesn't exist"""
    enum_name_escaped = enum_name.replace('"', '""')
    values_str = ", ".join([f"'{v.replace(chr(39), chr(39) * 2)}'" for v in enum_values])
    op.execute(f"""
        DO $$ BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{enum_name_escaped}') THEN
                CREATE TYPE "{enum_name_escaped}" AS ENUM ({values_str});
            END IF;
        END $$;
    """)


STAGES = ['New', 'Contacted', 'Qualified', 'Proposal', 'Negotiation', 'Won', 'Lost']
DIRECTIONS = ['inbound', 'outbound']
TRIGGERS = ['contact_created', 'message_received', 'stage_changed', 'scheduled_followup', 'custom_followup']
LOG_STATUSES = ['success', 'failed']


def upgrade() -> None:
    create_enum_if_not_exists('contactstage', STAGES)
    create_enum_if_not_exists('messagedirection', DIRECTIONS)
    create_enum_if_not_exists('automationtrigger', TRIGGERS)
    create_enum_if_not_exists('automationlogstatus', LOG_STATUSES)

    # Businesses
    op.create_table(
        'businesses',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # WhatsApp accounts
    op.create_table(
        'whatsapp_accounts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('phone_number', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('api_token', sa.String(), nullable=True),
        sa.Column('phone_number_id', sa.String(), nullable=True, index=True),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('connected_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Message templates
    op.create_table(
        'message_templates',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Contacts
    op.create_table(
        'contacts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('phone', sa.String(), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('stage', postgresql.ENUM(*STAGES, name='contactstage', create_type=False), nullable=False, server_default='New', index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('last_active', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('business_id', 'phone', name='uq_contacts_business_phone'),
    )

    # Contact tags
    op.create_table(
        'contact_tags',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('contact_id', sa.Integer(), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('tag', sa.String(), nullable=False),
        sa.UniqueConstraint('contact_id', 'tag', name='uq_contact_tags_contact_tag'),
    )

    # Pipeline history
    op.create_table(
        'pipeline_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('contact_id', sa.Integer(), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('from_stage', sa.String(), nullable=True),
        sa.Column('to_stage', sa.String(), nullable=False),
        sa.Column('changed_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), index=True),
    )

    # Messages
    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('whatsapp_account_id', sa.Integer(), sa.ForeignKey('whatsapp_accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('contact_id', sa.Integer(), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('direction', postgresql.ENUM(*DIRECTIONS, name='messagedirection', create_type=False), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='sent'),
        sa.Column('provider_message_id', sa.String(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), index=True),
    )

    # Automation rules
    op.create_table(
        'automation_rules',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('trigger', postgresql.ENUM(*TRIGGERS, name='automationtrigger', create_type=False), nullable=False, index=True),
        sa.Column('condition', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('action', postgresql.JSONB(), nullable=False),
        sa.Column('delay_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Automation logs
    op.create_table(
        'automation_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('rule_id', sa.Integer(), sa.ForeignKey('automation_rules.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('contact_id', sa.Integer(), sa.ForeignKey('contacts.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('status', postgresql.ENUM(*LOG_STATUSES, name='automationlogstatus', create_type=False), nullable=False),
        sa.Column('trigger_data', postgresql.JSONB(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), index=True),
    )

    # Follow-up attempts
    op.create_table(
        'followup_attempts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('contact_id', sa.Integer(), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('stage', sa.String(), nullable=False),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id', ondelete='SET NULL'), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('followup_attempts')
    op.drop_table('automation_logs')
    op.drop_table('automation_rules')
    op.drop_table('messages')
    op.drop_table('pipeline_history')
    op.drop_table('contact_tags')
    op.drop_table('contacts')
    op.drop_table('message_templates')
    op.drop_table('whatsapp_accounts')
    op.drop_table('businesses')

    op.execute('DROP TYPE IF EXISTS automationlogstatus')
    op.execute('DROP TYPE IF EXISTS automationtrigger')
    op.execute('DROP TYPE IF EXISTS messagedirection')
    op.execute('DROP TYPE IF EXISTS contactstage')
