"""
Bounded-concurrency fan-out over pool hosts.

run_all() runs one coroutine per host with at most CAPACITY_IN_PARALLEL in
flight and collects a HostResult for every host. A host whose operation
raises gets a failed result; its siblings carry on.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import CAPACITY_IN_PARALLEL

logger = logging.getLogger(__name__)


@dataclass
class HostResult:
    host: Dict
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def get(self) -> Any:
        """Return the value, or re-raise the host's failure."""
        if self.error is not None:
            raise self.error
        return self.value


async def run_all(
    hosts: List[Dict],
    op: Callable[[Dict], Awaitable[Any]],
    capacity: int = CAPACITY_IN_PARALLEL,
) -> List[HostResult]:
    """
    Run op against every host with bounded concurrency.

    Args:
        hosts: Host records
        op: Coroutine function taking a host record
        capacity: Maximum number of operations in flight

    Returns:
        list: One HostResult per host, in input order
    """
    semaphore = asyncio.Semaphore(capacity)

    async def run_one(host: Dict) -> HostResult:
        async with semaphore:
            try:
                return HostResult(host=host, value=await op(host))
            except Exception as e:
                logger.warning(f"Operation failed on host {host.get('ref')}: {e}")
                return HostResult(host=host, error=e)

    return list(await asyncio.gather(*(run_one(host) for host in hosts)))
