"""
Per-host update queries and local application.

query_local() runs on a host and lists the updates it would take from the
coordinator's mirror. query_remote() is how the coordinator asks a host for
that report over HTTP. apply_local() upgrades the host from the mirror.
"""

import os
import logging
from typing import Dict

from ..config import REPOMD_XML
from ..config_loader import get_local_host_ref
from ..errors import ApplyUpdatesFailed, FleetPatchError, GetHostUpdatesFailed
from ..utils import host_client
from . import package_manager
from .coordination import local_repository
from .metadata import parse_metadata_index, parse_updateinfo
from .updates import get_rpm_update, get_updates_from_updateinfo, parse_installed_pkgs

logger = logging.getLogger(__name__)


def _get_local_updateinfo(repo_name: str):
    # The package manager caches the update-info document next to repomd.xml
    cachedir = package_manager.get_cachedir(repo_name)
    md = parse_metadata_index(os.path.join(cachedir, REPOMD_XML))
    return parse_updateinfo(os.path.join(cachedir, os.path.basename(md.location)))


async def query_local(installed: bool) -> Dict:
    """
    List the updates this host would take from the pool repository.

    Args:
        installed: Also report the installed version of each package

    Returns:
        dict: {'updates': [Update JSON, ...]}

    Raises:
        GetHostUpdatesFailed: if the package manager fails
    """
    host_ref = get_local_host_ref()
    try:
        with local_repository() as repo_name:
            await package_manager.clean_yum_cache(repo_name)
            await package_manager.makecache(repo_name)
            rpm2updates = get_updates_from_updateinfo(_get_local_updateinfo(repo_name))

            installed_pkgs = {}
            if installed:
                installed_pkgs = parse_installed_pkgs(await package_manager.get_installed_pkgs())

            updates = []
            for line in await package_manager.list_updates(repo_name):
                update = get_rpm_update(line, rpm2updates, installed_pkgs)
                if update is not None:
                    updates.append(update.to_json())

        # TODO: report live patches alongside package updates
        return {'updates': updates}
    except FleetPatchError:
        raise
    except Exception as e:
        logger.error(f"Failed to get host updates on host ref={host_ref}: {e}")
        raise GetHostUpdatesFailed(host_ref) from e


async def query_remote(host: Dict, installed: bool) -> Dict:
    """
    Ask a host for its update report.

    Args:
        host: Host record
        installed: Passed through as the 'installed' query parameter

    Returns:
        dict: The host's JSON report

    Raises:
        GetHostUpdatesFailed: on any session or transport failure
    """
    ref = host['ref']
    logger.debug(f"Getting host updates on {host.get('hostname')} (addr {host.get('address')}) by HTTP GET")
    try:
        report = await host_client.get_host_updates(host, installed)
    except Exception as e:
        logger.error(f"Failed to get updates from host ref='{ref}': {e}")
        raise GetHostUpdatesFailed(ref) from e
    logger.debug(f"Host {host.get('hostname')} returned updates: {report}")
    return report


async def apply_local() -> str:
    """
    Upgrade this host's packages from the pool repository.

    Raises:
        ApplyUpdatesFailed: if the package manager fails
    """
    host_ref = get_local_host_ref()
    try:
        with local_repository() as repo_name:
            await package_manager.clean_yum_cache(repo_name)
            return await package_manager.upgrade(repo_name)
    except Exception as e:
        logger.error(f"Failed to apply updates on host ref='{host_ref}': {e}")
        raise ApplyUpdatesFailed(host_ref) from e
