"""
Working state for one import run.

``ImportContext`` replaces ad-hoc shared lists: it owns the working
snapshot of clients, services, workers and base projects, the worker
resolution cache and the run counters, and is passed explicitly to each
stage. It is discarded when the run ends.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from services.data_store import DataStore
from services.progress_reporter import ProgressReporter

logger = logging.getLogger(__name__)

BASE_PROJECT_NAME = 'base'

ClientKey = Tuple[str, str]
ServiceKey = Tuple[str, Decimal]


def client_key(name: Optional[str], phone: Optional[str]) -> Optional[ClientKey]:
    """(name, phone), case-insensitive; None when there is no name."""
    if not name or not name.strip():
        return None
    return name.strip().lower(), (phone or '').strip().lower()


def service_key(name: Optional[str], cost: Any) -> Optional[ServiceKey]:
    """(name, cost); the name compares case-insensitively, the cost exactly."""
    if not name or not name.strip() or cost is None:
        return None
    try:
        amount = cost if isinstance(cost, Decimal) else Decimal(str(cost))
    except InvalidOperation:
        return None
    return name.strip().lower(), amount


def worker_key(name: Optional[str]) -> Optional[str]:
    if not name or not name.strip():
        return None
    return name.strip().lower()


@dataclass(frozen=True)
class WorkerAssignment:
    """A resolved (worker, base project) pair."""
    worker_id: Any
    project_id: Any


@dataclass
class RepairStats:
    """Counters for the single-row fallback creates outside the bulk path."""
    projects_created: int = 0
    workers_created: int = 0
    failures: int = 0

    @property
    def total(self) -> int:
        return self.projects_created + self.workers_created

    def to_dict(self) -> Dict[str, int]:
        return {
            'projects_created': self.projects_created,
            'workers_created': self.workers_created,
            'failures': self.failures,
        }


@dataclass
class ImportContext:
    """Explicit pipeline state for one organization's import run."""
    organization_id: str
    reporter: ProgressReporter
    clients: Dict[ClientKey, Dict[str, Any]] = field(default_factory=dict)
    services: Dict[ServiceKey, Dict[str, Any]] = field(default_factory=dict)
    workers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    worker_projects: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    worker_cache: Dict[str, WorkerAssignment] = field(default_factory=dict)
    failed_categories: Set[str] = field(default_factory=set)
    created: Dict[str, int] = field(default_factory=lambda: {
        'clients': 0, 'client_custom_fields': 0, 'services': 0,
        'workers': 0, 'worker_projects': 0,
    })
    repairs: RepairStats = field(default_factory=RepairStats)

    @classmethod
    def from_store(cls, store: DataStore, reporter: ProgressReporter,
                   page_size: Optional[int] = None) -> 'ImportContext':
        """Build the initial working snapshot, one paginated select per entity type."""
        context = cls(organization_id=store.organization_id, reporter=reporter)

        context.add_clients(store.select_all('clients', columns=['id', 'name', 'phone'],
                                             page_size=page_size))
        context.add_services(store.select_all('services', columns=['id', 'name', 'cost'],
                                              page_size=page_size))
        context.add_workers(store.select_all('workers', columns=['id', 'name'],
                                             page_size=page_size))
        context.add_worker_projects(store.select_all(
            'worker_projects',
            filters={'name': BASE_PROJECT_NAME},
            columns=['id', 'worker_id', 'name'],
            page_size=page_size
        ))

        reporter.log(
            f"Loaded {len(context.clients)} clients, {len(context.services)} services, "
            f"{len(context.workers)} workers, {len(context.worker_projects)} worker projects"
        )
        return context

    # First record wins when the store already holds duplicates of a key.

    def add_clients(self, rows: Iterable[Dict[str, Any]]):
        for row in rows:
            key = client_key(row.get('name'), row.get('phone'))
            if key is not None:
                self.clients.setdefault(key, row)

    def add_services(self, rows: Iterable[Dict[str, Any]]):
        for row in rows:
            key = service_key(row.get('name'), row.get('cost'))
            if key is not None:
                self.services.setdefault(key, row)

    def add_workers(self, rows: Iterable[Dict[str, Any]]):
        for row in rows:
            key = worker_key(row.get('name'))
            if key is not None:
                self.workers.setdefault(key, row)

    def add_worker_projects(self, rows: Iterable[Dict[str, Any]]):
        for row in rows:
            if row.get('name', BASE_PROJECT_NAME) == BASE_PROJECT_NAME:
                self.worker_projects.setdefault(row['worker_id'], row)

    def find_client(self, name: Optional[str], phone: Optional[str]) -> Optional[Dict[str, Any]]:
        key = client_key(name, phone)
        return self.clients.get(key) if key else None

    def find_service(self, name: Optional[str], cost: Any) -> Optional[Dict[str, Any]]:
        key = service_key(name, cost)
        return self.services.get(key) if key else None

    def find_worker(self, name: Optional[str]) -> Optional[Dict[str, Any]]:
        key = worker_key(name)
        return self.workers.get(key) if key else None
