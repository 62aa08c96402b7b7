"""Initial schema for the order import system

Revision ID: 001_initial_schema
Revises: 
Create Date: 2025-10-14

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _org_column():
    return sa.Column('organization_id', sa.String(length=64), nullable=False, comment='Tenant boundary')


def upgrade() -> None:
    # Clients
    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Display name'),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        comment='Customers, matched on (name, phone) case-insensitive'
    )
    op.create_index('idx_clients_org_name', 'clients', ['organization_id', 'name'])
    
    op.create_table(
        'client_custom_fields',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=20), server_default='text', nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_client_custom_fields_client', 'client_custom_fields', ['client_id'])
    
    # Services: upserted on (organization_id, name, cost)
    op.create_table(
        'services',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('cost', sa.Numeric(precision=12, scale=2), nullable=False, comment='Unit cost'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'name', 'cost', name='uq_services_org_name_cost'),
        comment='Services, matched on (name, cost)'
    )
    
    # Workers and their projects
    op.create_table(
        'workers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_workers_org_name', 'workers', ['organization_id', 'name'])
    
    op.create_table(
        'worker_projects',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('worker_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=12, scale=2), server_default='0', nullable=False),
        sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_worker_projects_worker_name', 'worker_projects', ['worker_id', 'name'])
    
    # Orders and their lines
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('order_number', sa.String(length=100), nullable=False, comment='Case-sensitive business key'),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('due_date', sa.TIMESTAMP(), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('order_type', sa.String(length=50), server_default='service_order', nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), server_default='0', nullable=False),
        sa.Column('outstanding_balance', sa.Numeric(precision=12, scale=2), server_default='0', nullable=False),
        sa.Column('payment_status', sa.String(length=20), server_default='unpaid', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        comment='Orders; order_number is a business key but not unique'
    )
    op.create_index('idx_orders_org_number', 'orders', ['organization_id', 'order_number'])
    op.create_index('idx_orders_client', 'orders', ['client_id'])
    
    op.create_table(
        'order_services',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('cost', sa.Numeric(precision=12, scale=2), nullable=False,
                  comment='Line cost (quantity x unit cost)'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_order_services_order', 'order_services', ['order_id'])
    
    op.create_table(
        'order_workers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _org_column(),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('worker_id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='assigned', nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id']),
        sa.ForeignKeyConstraint(['project_id'], ['worker_projects.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_order_workers_order', 'order_workers', ['order_id'])


def downgrade() -> None:
    op.drop_index('idx_order_workers_order', table_name='order_workers')
    op.drop_table('order_workers')
    op.drop_index('idx_order_services_order', table_name='order_services')
    op.drop_table('order_services')
    op.drop_index('idx_orders_client', table_name='orders')
    op.drop_index('idx_orders_org_number', table_name='orders')
    op.drop_table('orders')
    op.drop_index('idx_worker_projects_worker_name', table_name='worker_projects')
    op.drop_table('worker_projects')
    op.drop_index('idx_workers_org_name', table_name='workers')
    op.drop_table('workers')
    op.drop_table('services')
    op.drop_index('idx_client_custom_fields_client', table_name='client_custom_fields')
    op.drop_table('client_custom_fields')
    op.drop_index('idx_clients_org_name', table_name='clients')
    op.drop_table('clients')
