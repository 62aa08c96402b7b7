"""
Entity Diff Engine - which clients, services and workers must be created.

Pure set computation over the normalized rows and the keys already present
in the working snapshot. No I/O happens here.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Container, Dict, Iterable, List, Optional

from services.import_context import (
    ClientKey, ServiceKey, client_key, service_key, worker_key
)
from services.row_normalizer import NormalizedRow, OrderField
from services.service_text import ServiceTextParser

logger = logging.getLogger(__name__)

WORKER_FIELDS = (OrderField.ASSIGNED_TOP_WORKER, OrderField.ASSIGNED_BOTTOM_WORKER)

MEASUREMENT_TITLES = {
    OrderField.CLIENT_TOP_MEASUREMENT: 'Top Measurement',
    OrderField.CLIENT_BOTTOM_MEASUREMENT: 'Bottom Measurement',
}


@dataclass
class NewClient:
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    custom_fields: Dict[str, str] = field(default_factory=dict)
    row_index: int = 0

    def to_record(self) -> Dict[str, Optional[str]]:
        return {
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
            'status': 'active',
        }


@dataclass
class NewService:
    name: str
    cost: Decimal

    def to_record(self) -> Dict[str, object]:
        return {'name': self.name, 'cost': self.cost}


@dataclass
class NewWorker:
    name: str

    def to_record(self) -> Dict[str, str]:
        return {'name': self.name, 'status': 'active'}


@dataclass
class EntityDiff:
    """Entities to create, keyed by natural key, in first-seen order."""
    clients: Dict[ClientKey, NewClient] = field(default_factory=dict)
    services: Dict[ServiceKey, NewService] = field(default_factory=dict)
    workers: Dict[str, NewWorker] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.clients or self.services or self.workers)

    def counts(self) -> Dict[str, int]:
        return {
            'clients': len(self.clients),
            'services': len(self.services),
            'workers': len(self.workers),
        }


def _client_custom_fields(row: NormalizedRow) -> Dict[str, str]:
    fields = {}
    for order_field, title in MEASUREMENT_TITLES.items():
        value = row.get(order_field)
        if value:
            fields[title] = value
    fields.update(row.custom_fields)
    return fields


def compute_entity_diff(
    rows: Iterable[NormalizedRow],
    existing_clients: Container[ClientKey],
    existing_services: Container[ServiceKey],
    existing_workers: Container[str],
    parser: Optional[ServiceTextParser] = None
) -> EntityDiff:
    """
    Compute the entities referenced by ``rows`` that do not exist yet.

    Matching is exact on the composite key. Only the first row introducing
    a key schedules it; later rows resolve against that first occurrence
    once it is materialized.
    """
    parser = parser or ServiceTextParser()
    diff = EntityDiff()

    for row in rows:
        key = client_key(row.client_name, row.client_phone)
        if key is not None and key not in existing_clients and key not in diff.clients:
            diff.clients[key] = NewClient(
                name=row.client_name.strip(),
                phone=(row.client_phone or '').strip(),
                email=row.get(OrderField.CLIENT_EMAIL),
                address=row.get(OrderField.CLIENT_ADDRESS),
                custom_fields=_client_custom_fields(row),
                row_index=row.index
            )

        for entry in parser.parse(row.get(OrderField.SERVICE)).entries:
            key = service_key(entry.name, entry.price)
            if key not in existing_services and key not in diff.services:
                diff.services[key] = NewService(name=entry.name, cost=entry.price)

        for worker_field in WORKER_FIELDS:
            name = row.get(worker_field)
            key = worker_key(name)
            if key is not None and key not in existing_workers and key not in diff.workers:
                diff.workers[key] = NewWorker(name=name.strip())

    logger.info(f"Entity diff: {diff.counts()}")
    return diff


def affected_rows(rows: List[NormalizedRow], diff: EntityDiff) -> List[int]:
    """Indexes of rows that reference at least one entity scheduled for creation."""
    indexes = []
    for row in rows:
        if client_key(row.client_name, row.client_phone) in diff.clients:
            indexes.append(row.index)
            continue
        if any(worker_key(row.get(f)) in diff.workers for f in WORKER_FIELDS):
            indexes.append(row.index)
    return indexes
