"""
SQLAlchemy models for the order import system.

This module defines the organization-scoped business records the import
pipeline reads and writes, matching the schema defined in Alembic migrations.
"""

from sqlalchemy import (
    Column, Integer, String, Text, Numeric, TIMESTAMP,
    ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Client(Base):
    """A customer of the organization."""

    __tablename__ = 'clients'
    __table_args__ = (
        Index('idx_clients_org_name', 'organization_id', 'name'),
        {'comment': 'Customers, matched on (name, phone) case-insensitive'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(
        String(64),
        nullable=False,
        comment='Tenant boundary'
    )
    name = Column(String(255), nullable=False, comment='Display name')
    phone = Column(String(64), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    status = Column(String(20), server_default='active', nullable=False)
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    custom_fields = relationship('ClientCustomField', back_populates='client')

    def __repr__(self):
        return f"<Client(id={self.id}, name='{self.name}', phone='{self.phone}')>"


class ClientCustomField(Base):
    """Free-form titled value attached to a client (measurements etc.)."""

    __tablename__ = 'client_custom_fields'
    __table_args__ = (
        Index('idx_client_custom_fields_client', 'client_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(String(64), nullable=False)
    client_id = Column(
        Integer,
        ForeignKey('clients.id', ondelete='CASCADE'),
        nullable=False
    )
    title = Column(String(255), nullable=False)
    value = Column(Text, nullable=True)
    type = Column(String(20), server_default='text', nullable=False)

    client = relationship('Client', back_populates='custom_fields')


class Service(Base):
    """A billable service with a unit cost."""

    __tablename__ = 'services'
    __table_args__ = (
        UniqueConstraint('organization_id', 'name', 'cost', name='uq_services_org_name_cost'),
        {'comment': 'Services, matched on (name, cost)'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    cost = Column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment='Unit cost'
    )

    def __repr__(self):
        return f"<Service(id={self.id}, name='{self.name}', cost={self.cost})>"


class Worker(Base):
    """A worker orders can be assigned to."""

    __tablename__ = 'workers'
    __table_args__ = (
        Index('idx_workers_org_name', 'organization_id', 'name'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    status = Column(String(20), server_default='active', nullable=False)

    projects = relationship('WorkerProject', back_populates='worker')

    def __repr__(self):
        return f"<Worker(id={self.id}, name='{self.name}')>"


class WorkerProject(Base):
    """
    A worker's work bucket.

    Every worker referenced by an order needs a project named 'base'.
    """

    __tablename__ = 'worker_projects'
    __table_args__ = (
        Index('idx_worker_projects_worker_name', 'worker_id', 'name'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(String(64), nullable=False)
    worker_id = Column(
        Integer,
        ForeignKey('workers.id', ondelete='CASCADE'),
        nullable=False
    )
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(precision=12, scale=2), server_default='0', nullable=False)
    status = Column(String(20), server_default='active', nullable=False)

    worker = relationship('Worker', back_populates='projects')


class Order(Base):
    """A client order. The import pipeline only ever inserts these."""

    __tablename__ = 'orders'
    __table_args__ = (
        Index('idx_orders_org_number', 'organization_id', 'order_number'),
        Index('idx_orders_client', 'client_id'),
        {'comment': 'Orders; order_number is a business key but not unique'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(String(64), nullable=False)
    order_number = Column(String(100), nullable=False, comment='Case-sensitive business key')
    client_id = Column(
        Integer,
        ForeignKey('clients.id'),
        nullable=False
    )
    description = Column(Text, nullable=True)
    due_date = Column(TIMESTAMP, nullable=True)
    status = Column(String(20), server_default='pending', nullable=False)
    order_type = Column(String(50), server_default='service_order', nullable=False)
    total_amount = Column(Numeric(precision=12, scale=2), server_default='0', nullable=False)
    outstanding_balance = Column(Numeric(precision=12, scale=2), server_default='0', nullable=False)
    payment_status = Column(String(20), server_default='unpaid', nullable=False)
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    services = relationship('OrderService', back_populates='order')
    workers = relationship('OrderWorker', back_populates='order')

    def __repr__(self):
        return f"<Order(id={self.id}, order_number='{self.order_number}', total={self.total_amount})>"


class OrderService(Base):
    """A service line on an order."""

    __tablename__ = 'order_services'
    __table_args__ = (
        Index('idx_order_services_order', 'order_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(String(64), nullable=False)
    order_id = Column(
        Integer,
        ForeignKey('orders.id', ondelete='CASCADE'),
        nullable=False
    )
    service_id = Column(Integer, ForeignKey('services.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    cost = Column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment='Line cost (quantity x unit cost)'
    )

    order = relationship('Order', back_populates='services')


class OrderWorker(Base):
    """Assignment of a worker (through one of their projects) to an order."""

    __tablename__ = 'order_workers'
    __table_args__ = (
        Index('idx_order_workers_order', 'order_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    organization_id = Column(String(64), nullable=False)
    order_id = Column(
        Integer,
        ForeignKey('orders.id', ondelete='CASCADE'),
        nullable=False
    )
    worker_id = Column(Integer, ForeignKey('workers.id'), nullable=False)
    project_id = Column(Integer, ForeignKey('worker_projects.id'), nullable=False)
    status = Column(String(20), server_default='assigned', nullable=False)

    order = relationship('Order', back_populates='workers')
