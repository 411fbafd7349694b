"""
Pool repository mirror lifecycle.

This module mirrors the pool's enabled upstream repository into the local
cache and rebuilds the repository metadata hosts install from. Every
mutation of the mirror runs under the reposync lock.
"""

import os
import shutil
import logging
from typing import Optional

from ..config import REPODATA_DIR, REPOMD_XML, UPDATEINFO_MDTYPE, UPDATEINFO_SUFFIX
from ..config_loader import get_pool_repo_dir, get_pool_repo_name, get_repository_config
from ..errors import (
    FleetPatchError,
    InvalidUpdateInfoDocument,
    MetadataRebuildFailed,
    RepositoryCleanupFailed,
    SyncFailed,
)
from ..models import repository as repository_db
from . import orchestrator
from . import package_manager
from .coordination import pool_repository, reposync_lock
from .metadata import parse_metadata_index, updateinfo_xml

logger = logging.getLogger(__name__)


async def _cleanup_pool_mirror() -> None:
    """
    Remove the mirror: cached metadata, configuration and files.

    The caller must hold the reposync lock.

    Raises:
        RepositoryCleanupFailed: if any step fails; the mirror is then in an
            indeterminate state
    """
    repo_name = get_pool_repo_name()
    mirror_root = get_repository_config()['local_pool_repo_dir']
    try:
        await package_manager.clean_yum_cache(repo_name)
        package_manager.remove_repo_conf_file(repo_name)
        if os.path.exists(mirror_root):
            shutil.rmtree(mirror_root)
        logger.info(f"Cleaned up pool repository mirror {mirror_root}")
    except Exception as e:
        logger.error(f"Failed to cleanup pool repository: {e}")
        raise RepositoryCleanupFailed() from e


async def _sync_repository(ref: str) -> None:
    """
    Mirror a repository into the local cache.

    The caller must hold the reposync lock.

    Raises:
        SyncFailed: if configuring or running the mirroring tool fails
    """
    config = get_repository_config()
    repo_name = config['pool_repo_name']
    gpgcheck = config['repository_gpgcheck']
    try:
        repo = repository_db.get_repository(ref)
        if repo is None:
            raise KeyError(f"Unknown repository {ref}")

        package_manager.remove_repo_conf_file(repo_name)
        package_manager.write_yum_config(
            repo_name, repo['binary_url'], source_url=repo['source_url'], gpgcheck=gpgcheck
        )
        await package_manager.yum_config_manager(repo_name, gpgcheck)

        os.makedirs(config['local_pool_repo_dir'], mode=0o700, exist_ok=True)
        await package_manager.clean_yum_cache(repo_name)
        await package_manager.reposync(config['local_pool_repo_dir'], repo_name, gpgcheck)
        logger.info(f"Synced repository {repo['name_label']} from {repo['binary_url']}")
    except Exception as e:
        logger.error(f"Failed to sync with remote YUM repository: {e}")
        raise SyncFailed() from e


async def _create_local_repository(ref: str) -> str:
    """
    Rebuild the servable pool repository after a sync.

    The caller must hold the reposync lock.

    Regenerates the repository indices, replaces the update-info metadata
    with the freshly synced one and then recomputes which hosts need
    updates, with the pool repository readable by hosts.

    Returns:
        str: The new update-info checksum stored against the repository

    Raises:
        SyncFailed: if the mirror directory does not exist
        InvalidUpdateInfoDocument: if the synced update-info is missing
        MetadataRebuildFailed: if rebuilding the metadata fails
    """
    repo_dir = get_pool_repo_dir()
    if not os.path.isdir(repo_dir):
        logger.error(f"Local pool repository directory '{repo_dir}' does not exist")
        raise SyncFailed()

    try:
        cachedir = package_manager.get_cachedir(get_pool_repo_name())
        md = parse_metadata_index(os.path.join(cachedir, REPOMD_XML))
        updateinfo_gz_path = os.path.join(repo_dir, md.checksum + UPDATEINFO_SUFFIX)
        if not os.path.exists(updateinfo_gz_path):
            logger.error(f"No updateinfo.xml.gz found: {updateinfo_gz_path}")
            raise InvalidUpdateInfoDocument(f"Update-info document not found: {updateinfo_gz_path}")

        await package_manager.createrepo(repo_dir)
        repodata_dir = os.path.join(repo_dir, REPODATA_DIR)
        with updateinfo_xml(updateinfo_gz_path) as xml_path:
            await package_manager.modifyrepo_remove(UPDATEINFO_MDTYPE, repodata_dir)
            await package_manager.modifyrepo_add(UPDATEINFO_MDTYPE, xml_path, repodata_dir)

        with pool_repository():
            return await orchestrator.compute_pool_update_status(ref)
    except FleetPatchError:
        raise
    except Exception as e:
        logger.error(f"Creating local pool repository failed: {e}")
        raise MetadataRebuildFailed() from e


async def cleanup_pool_mirror() -> None:
    """Remove the mirror under the reposync lock."""
    with reposync_lock():
        await _cleanup_pool_mirror()


async def sync_repository(ref: str) -> None:
    """
    Mirror a repository into the local cache under the reposync lock.

    Raises:
        SyncAlreadyInProgress: if another holder has the lock
        SyncFailed: if configuring or running the mirroring tool fails
    """
    with reposync_lock():
        await _sync_repository(ref)


async def create_local_repository(ref: str) -> str:
    """Rebuild the servable pool repository under the reposync lock."""
    with reposync_lock():
        return await _create_local_repository(ref)


async def sync_updates(ref: Optional[str] = None, force: bool = False) -> str:
    """
    Sync the pool's enabled repository and rebuild its metadata.

    Args:
        ref: Repository to sync, defaults to the pool's enabled repository
        force: Remove the existing mirror before syncing

    Returns:
        str: The new update-info checksum

    Raises:
        SyncAlreadyInProgress: if another sync holds the reposync lock
    """
    ref = ref or repository_db.get_enabled_repository()
    with reposync_lock():
        if force:
            await _cleanup_pool_mirror()
        await _sync_repository(ref)
        checksum = await _create_local_repository(ref)
    logger.info(f"Pool repository {ref} synced, checksum {checksum}")
    return checksum


async def set_pool_repository(ref: Optional[str]) -> None:
    """
    Change the pool's enabled repository.

    Switching to a different repository discards the current mirror.
    """
    with reposync_lock():
        current = repository_db.get_enabled_repository_or_none()
        if current == ref:
            return
        if ref is not None and repository_db.get_repository(ref) is None:
            raise KeyError(f"Unknown repository {ref}")
        await _cleanup_pool_mirror()
        if current is not None and repository_db.get_repository(current) is not None:
            repository_db.set_up_to_date(current, False)
        repository_db.set_enabled_repository(ref)
