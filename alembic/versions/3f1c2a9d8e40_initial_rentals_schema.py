"""Initial rentals schema

Revision ID: 3f1c2a9d8e40
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d8e40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'

status_enum = postgresql.ENUM(
    'open', 'executed', 'cancelled', 'claimed', name='status', create_type=False
)
update_enum = postgresql.ENUM(
    'metadata', 'rentals', 'indexes', name='update', create_type=False
)


def upgrade() -> None:
    status_enum.create(op.get_bind(), checkfirst=True)
    update_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'metadata',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('category', sa.Text(), nullable=False),
        sa.Column('search_text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('distance_to_plaza', sa.Integer(), nullable=True),
        sa.Column('adjacent_to_road', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('estate_size', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_table(
        'rentals',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'metadata_id',
            sa.Text(),
            sa.ForeignKey('metadata.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('network', sa.Text(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('contract_address', sa.Text(), nullable=False),
        sa.Column('token_id', sa.Text(), nullable=False),
        sa.Column('expiration', sa.DateTime(), nullable=False),
        sa.Column('nonces', postgresql.ARRAY(sa.Text(), dimensions=1), nullable=False),
        sa.Column('signature', sa.Text(), nullable=False),
        sa.Column('rental_contract_address', sa.Text(), nullable=False),
        sa.Column('status', status_enum, nullable=False, server_default='open'),
        sa.Column('target', sa.Text(), nullable=False, server_default=ZERO_ADDRESS),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('rented_days', sa.Integer(), nullable=True),
        sa.Column('period_chosen', sa.Uuid(), nullable=True),
    )
    op.create_index('rentals_metadata_id_index', 'rentals', ['metadata_id'])
    op.create_index('rentals_signature_index', 'rentals', ['signature'])
    # At most one open listing per token
    op.create_index(
        'rentals_token_id_contract_address_status_unique_index',
        'rentals',
        ['token_id', 'contract_address', 'status'],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        'rentals_listings',
        sa.Column(
            'id',
            sa.Uuid(),
            sa.ForeignKey('rentals.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column('lessor', sa.Text(), nullable=False),
        sa.Column('tenant', sa.Text(), nullable=True),
    )

    op.create_table(
        'periods',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('min_days', sa.Integer(), nullable=False),
        sa.Column('max_days', sa.Integer(), nullable=False),
        sa.Column('price_per_day', sa.Numeric(78), nullable=False),
        sa.Column(
            'rental_id',
            sa.Uuid(),
            sa.ForeignKey('rentals.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.CheckConstraint('min_days >= 0', name='periods_min_days_check'),
        sa.CheckConstraint('max_days >= min_days', name='periods_max_days_check'),
        sa.CheckConstraint('price_per_day >= 0', name='periods_price_per_day_check'),
    )
    op.create_index('periods_rental_id_index', 'periods', ['rental_id'])
    op.create_index('periods_min_days_index', 'periods', ['min_days'])
    op.create_index('periods_max_days_index', 'periods', ['max_days'])
    op.create_index('periods_price_per_day_index', 'periods', ['price_per_day'])

    # periods and rentals reference each other
    op.create_foreign_key(
        'rentals_period_chosen_fkey', 'rentals', 'periods', ['period_chosen'], ['id']
    )

    op.create_table(
        'updates',
        sa.Column('type', update_enum, primary_key=True),
        sa.Column(
            'updated_at',
            sa.DateTime(),
            nullable=False,
            server_default=sa.text('to_timestamp(0)'),
        ),
    )
    op.create_index('updates_updated_at_index', 'updates', ['updated_at'])

    # Metadata starts from now: older LAND changes only matter once listed
    op.execute(
        "INSERT INTO updates (type, updated_at) VALUES "
        "('metadata', now()), ('rentals', to_timestamp(0)), ('indexes', to_timestamp(0))"
    )


def downgrade() -> None:
    op.drop_index('updates_updated_at_index', table_name='updates')
    op.drop_table('updates')
    op.drop_constraint('rentals_period_chosen_fkey', 'rentals', type_='foreignkey')
    op.drop_index('periods_price_per_day_index', table_name='periods')
    op.drop_index('periods_max_days_index', table_name='periods')
    op.drop_index('periods_min_days_index', table_name='periods')
    op.drop_index('periods_rental_id_index', table_name='periods')
    op.drop_table('periods')
    op.drop_table('rentals_listings')
    op.drop_index('rentals_token_id_contract_address_status_unique_index', table_name='rentals')
    op.drop_index('rentals_signature_index', table_name='rentals')
    op.drop_index('rentals_metadata_id_index', table_name='rentals')
    op.drop_table('rentals')
    op.drop_table('metadata')
    update_enum.drop(op.get_bind(), checkfirst=True)
    status_enum.drop(op.get_bind(), checkfirst=True)
