"""
Pool update orchestration.

Everything here runs on the coordinator: computing whether the pool is up
to date after a sync, consolidating the per-host update reports against
the mirror's update-info, and driving the apply + remediation cycle of a
host.
"""

import logging
from typing import Dict, Iterable, List

from ..errors import (
    ApplyGuidanceFailed,
    ApplyUpdatesFailed,
    FleetPatchError,
    GetHostUpdatesFailed,
    GetPoolUpdatesFailed,
)
from ..models import host as host_db
from ..models import repository as repository_db
from ..models.vm import PAUSED, RUNNING, needs_device_model_restart
from ..utils import host_client
from . import fanout
from . import guidance
from . import host_query
from .coordination import pool_repository
from .guidance import Guidance, GuidanceKind
from .metadata import get_repomd_path, parse_metadata_index, parse_pool_updateinfo
from .updates import consolidate_host_updates, updates_of_json

logger = logging.getLogger(__name__)


async def compute_pool_update_status(ref: str) -> str:
    """
    Record whether any host of the pool has pending updates.

    Runs right after the mirror is rebuilt, with the reposync lock and the
    pool-repository permit held by the caller.

    Returns:
        str: The mirror's update-info checksum, stored as the repository hash
    """
    hosts = host_db.get_all_hosts()
    md = parse_metadata_index(get_repomd_path())

    async def are_updates_available(host: Dict) -> bool:
        report = await host_query.query_remote(host, installed=False)
        updates = report.get('updates') if isinstance(report, dict) else None
        if not isinstance(updates, list):
            logger.error(f"Invalid updates from host ref='{host['ref']}': {report}")
            raise GetHostUpdatesFailed(host['ref'])
        return bool(updates)

    results = await fanout.run_all(hosts, are_updates_available)
    available = [result.get() for result in results]

    is_all_up_to_date = not any(available)
    repository_db.set_up_to_date(ref, is_all_up_to_date)
    repository_db.set_hash(ref, md.checksum)
    logger.info(
        f"Repository {ref}: {sum(available)} of {len(hosts)} host(s) have updates, "
        f"checksum {md.checksum}"
    )
    return md.checksum


async def consolidate_pool_updates(hosts: List[Dict]) -> Dict:
    """
    Collect the pending updates of the given hosts.

    Returns:
        dict: {'hosts': [per-host entry], 'updates': [UpdateInfo JSON],
               'hash': checksum}

    Raises:
        NoRepositoryEnabled: if the pool has no enabled repository
        RepositoryOutOfSync: if the mirror changed since the last sync
        GetHostUpdatesFailed: if a host cannot report its updates
        GetPoolUpdatesFailed: on any other failure
    """
    ref = repository_db.get_enabled_repository()
    expected_hash = repository_db.get_hash(ref)
    try:
        updates_info = parse_pool_updateinfo(expected_hash)

        async def get_host_updates(host: Dict) -> Dict:
            return await host_query.query_remote(host, installed=True)

        with pool_repository():
            results = await fanout.run_all(hosts, get_host_updates)

        entries = []
        update_ids = set()
        for result in results:
            entry, uids = consolidate_host_updates(updates_info, result.host['ref'], result.get())
            entries.append(entry)
            update_ids |= uids

        return {
            'hosts': entries,
            'updates': [updates_info[uid].to_json() for uid in sorted(update_ids)],
            'hash': expected_hash,
        }
    except FleetPatchError:
        raise
    except Exception as e:
        logger.error(f"Getting updates for pool failed: {e}")
        raise GetPoolUpdatesFailed() from e


async def apply_to_host(host: Dict, expected_hash: str) -> List[Guidance]:
    """
    Apply the pending updates of a host.

    Returns:
        list: The validated immediate guidances to execute afterwards, empty
        if the host was already up to date

    Raises:
        ApplyUpdatesFailed: if applying fails for a reason outside the
            named errors of the steps involved
    """
    ref = host['ref']
    try:
        with pool_repository():
            updates_info = parse_pool_updateinfo(expected_hash)
            updates = updates_of_json(await host_query.query_remote(host, installed=True))
            if not updates:
                logger.info(f"Host ref='{ref}' is already up to date.")
                return []

            immediate = guidance.evaluate(updates_info, updates, GuidanceKind.RECOMMENDED)
            guidance.assert_valid(immediate, host=ref)
            await host_client.apply_updates(host)

        absolute = guidance.evaluate(updates_info, updates, GuidanceKind.ABSOLUTE)
        if absolute:
            logger.info(
                f"Host ref='{ref}' has absolute guidance(s) {guidance.to_json(absolute)}, "
                f"not executed"
            )
        logger.info(f"Applied {len(updates)} update(s) on host ref='{ref}'")
        return sorted(immediate, key=lambda g: g.value)
    except FleetPatchError:
        raise
    except Exception as e:
        logger.error(f"Applying updates on host ref='{ref}' failed: {e}")
        raise ApplyUpdatesFailed(ref) from e


async def restart_device_models(host: Dict) -> None:
    """
    Restart the device models of the VMs resident on a host.

    A running VM backed by a device model is asked to restart it on its
    host. A paused VM cannot be restarted; it is reported together with
    every VM whose restart the host refused, after the remaining VMs have
    been handled.

    Raises:
        ApplyGuidanceFailed: naming the VMs whose device model could not
            be restarted
    """
    ref = host['ref']
    unrecoverable = []
    for vm in await host_client.get_resident_vms(host):
        if not needs_device_model_restart(vm):
            continue
        if vm.get('power_state') == RUNNING:
            try:
                await host_client.migrate_vm_locally(host, vm['uuid'])
            except Exception as e:
                logger.error(f"Failed to restart the device model of VM '{vm['uuid']}' on host ref='{ref}': {e}")
                unrecoverable.append(vm['uuid'])
        elif vm.get('power_state') == PAUSED:
            logger.error(f"VM '{vm['uuid']}' is paused, can't restart its device models")
            unrecoverable.append(vm['uuid'])

    if unrecoverable:
        raise ApplyGuidanceFailed(ref, unrecoverable)


async def _reboot_host(host: Dict, num_of_hosts: int) -> None:
    await host_client.reboot(host)


async def _restart_device_models(host: Dict, num_of_hosts: int) -> None:
    await restart_device_models(host)


async def _restart_device_models_if_sole_host(host: Dict, num_of_hosts: int) -> None:
    if num_of_hosts == 1:
        await restart_device_models(host)


async def _restart_toolstack(host: Dict, num_of_hosts: int) -> None:
    await host_client.restart_agent(host)


ACTION_HANDLERS = {
    guidance.REBOOT_HOST: _reboot_host,
    guidance.RESTART_DEVICE_MODELS: _restart_device_models,
    guidance.RESTART_DEVICE_MODELS_IF_SOLE_HOST: _restart_device_models_if_sole_host,
    guidance.RESTART_TOOLSTACK: _restart_toolstack,
}


async def execute_guidance(host: Dict, guidances: Iterable[Guidance]) -> None:
    """
    Carry out the immediate guidances of a host after its updates applied.

    Raises:
        InvalidGuidanceCombination: if the set is not a legal combination
        ApplyGuidanceFailed: if any action fails
    """
    ref = host['ref']
    guidances = frozenset(guidances)
    actions = guidance.actions_for(guidances, host=ref)
    num_of_hosts = len(host_db.get_all_hosts())

    try:
        for action in actions:
            logger.info(f"Executing {action} on host ref='{ref}'")
            await ACTION_HANDLERS[action](host, num_of_hosts)
    except ApplyGuidanceFailed:
        raise
    except Exception as e:
        logger.error(
            f"Applying immediate guidances {guidance.to_json(guidances)} on host "
            f"ref='{ref}' failed: {e}"
        )
        raise ApplyGuidanceFailed(ref) from e


async def apply_updates(host: Dict, expected_hash: str) -> List[Guidance]:
    """Apply a host's updates and execute the resulting immediate guidances."""
    guidances = await apply_to_host(host, expected_hash)
    await execute_guidance(host, guidances)
    return guidances
