"""Models package for the order import system."""
from backend.models.schema import (
    Base, Client, ClientCustomField, Service, Worker, WorkerProject,
    Order, OrderService, OrderWorker
)
from backend.models.job import JobRun, JobProgress, JobStatus, JobType

__all__ = [
    'Base', 'Client', 'ClientCustomField', 'Service', 'Worker', 'WorkerProject',
    'Order', 'OrderService', 'OrderWorker',
    'JobRun', 'JobProgress', 'JobStatus', 'JobType',
]
