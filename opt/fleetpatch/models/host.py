"""
Host records of the pool.

A host record holds the identity the engine needs to reach a pool member:
its reference, hostname and management address.
"""

import uuid
import logging
from typing import Dict, List, Optional

from ..errors import HostAlreadyExists
from .database import transaction

logger = logging.getLogger(__name__)


def add_host(hostname: str, address: str, ref: Optional[str] = None) -> Dict:
    """
    Registers a pool member and returns its record.

    Raises:
        HostAlreadyExists: if a host is already registered under ref
    """
    ref = ref or f"OpaqueRef:{uuid.uuid4()}"
    record = {'ref': ref, 'hostname': hostname, 'address': address}
    with transaction(write=True) as db:
        if ref in db['hosts']:
            raise HostAlreadyExists(ref)
        db['hosts'][ref] = record
    logger.info(f"Registered host {hostname} ({address}) as {ref}")
    return record


def get_all_hosts() -> List[Dict]:
    with transaction() as db:
        return list(db['hosts'].values())


def get_host(ref: str) -> Optional[Dict]:
    with transaction() as db:
        return db['hosts'].get(ref)
