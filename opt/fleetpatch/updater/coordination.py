"""
Process-wide coordination of access to the pool repository mirror.

Two pieces of state live here:

- the reposync lock, held by anything that rewrites the mirror. It is a
  try-lock: a second sync fails at once with SyncAlreadyInProgress instead
  of queueing behind the first.
- the pool-repository permit, held by anything that needs hosts to read
  the mirror through the /repository/ endpoint. The endpoint serves files
  only while at least one permit is held.

The member-side local repository configuration is reference counted the
same way, so concurrent queries and applies share one file.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from ..config import GET_REPOSITORY_URI
from ..config_loader import get_local_repo_name, get_pool_config, get_repository_config
from ..errors import SyncAlreadyInProgress
from .package_manager import remove_repo_conf_file, write_yum_config

logger = logging.getLogger(__name__)

_reposync_lock = threading.Lock()

_permit_lock = threading.Lock()
_pool_repository_permits = 0

_local_repository_lock = threading.Lock()
_local_repository_users = 0


@contextmanager
def reposync_lock() -> Iterator[None]:
    """
    Hold the reposync lock for the duration of the block.

    Raises:
        SyncAlreadyInProgress: if another holder has the lock
    """
    if not _reposync_lock.acquire(blocking=False):
        logger.warning("Rejecting repository operation: a sync is already in progress")
        raise SyncAlreadyInProgress()
    try:
        yield
    finally:
        _reposync_lock.release()


def is_reposync_in_progress() -> bool:
    return _reposync_lock.locked()


@contextmanager
def pool_repository() -> Iterator[None]:
    """Make the pool mirror readable by hosts for the duration of the block."""
    global _pool_repository_permits
    with _permit_lock:
        _pool_repository_permits += 1
    try:
        yield
    finally:
        with _permit_lock:
            _pool_repository_permits -= 1


def is_pool_repository_enabled() -> bool:
    with _permit_lock:
        return _pool_repository_permits > 0


def get_pool_repository_url() -> str:
    pool_config = get_pool_config()
    return (
        f"https://{pool_config['coordinator_address']}:{pool_config['https_port']}"
        f"{GET_REPOSITORY_URI}"
    )


@contextmanager
def local_repository() -> Iterator[str]:
    """
    Point this host's package manager at the coordinator's mirror.

    The local repository configuration exists while at least one block is
    open: the first user writes it and the last one removes it.

    Yields:
        str: The local repository id
    """
    global _local_repository_users
    repo_name = get_local_repo_name()
    with _local_repository_lock:
        if _local_repository_users == 0:
            write_yum_config(
                repo_name,
                get_pool_repository_url(),
                gpgcheck=get_repository_config()['repository_gpgcheck'],
                sslverify=get_pool_config()['verify_cert'],
            )
        _local_repository_users += 1
    try:
        yield repo_name
    finally:
        with _local_repository_lock:
            _local_repository_users -= 1
            if _local_repository_users == 0:
                remove_repo_conf_file(repo_name)
