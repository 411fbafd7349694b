"""
Update API handlers.

Member-internal endpoints report and apply a host's pending updates; the
pool endpoints run on the coordinator and drive the whole pool.
"""

import json
import logging
from aiohttp import web

from ..models import host as host_db
from ..models import repository as repository_db
from ..updater import guidance
from ..updater import host_query
from ..updater import orchestrator

logger = logging.getLogger(__name__)


async def get_host_updates(request):
    """Returns this host's pending updates against the pool repository."""
    installed = request.query.get('installed', 'false').lower() == 'true'
    report = await host_query.query_local(installed)
    return web.json_response(report)


async def apply_host_updates(request):
    """Upgrades this host from the pool repository."""
    await host_query.apply_local()
    return web.json_response({'status': 'success'})


async def get_pool_updates(request):
    """
    Returns the pending updates of the pool.

    The optional 'hosts' query parameter restricts the report to a
    comma-separated list of host refs.
    """
    hosts = host_db.get_all_hosts()
    requested = request.query.get('hosts')
    if requested:
        refs = [ref for ref in requested.split(',') if ref]
        unknown = [ref for ref in refs if host_db.get_host(ref) is None]
        if unknown:
            return web.json_response({
                'status': 'error',
                'message': f"Unknown host(s): {', '.join(unknown)}"
            }, status=404)
        hosts = [host_db.get_host(ref) for ref in refs]

    report = await orchestrator.consolidate_pool_updates(hosts)
    return web.json_response(report)


async def apply_updates_handler(request):
    """
    Applies the pending updates of one host and executes its guidances.

    Body (optional): {"hash": "<update-info checksum the caller reviewed>"}
    """
    ref = request.match_info['ref']
    host = host_db.get_host(ref)
    if host is None:
        return web.json_response({'status': 'error', 'message': f"Unknown host {ref}"}, status=404)

    data = {}
    if request.can_read_body:
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return web.json_response({'status': 'error', 'message': 'Invalid JSON body.'}, status=400)
        if not isinstance(data, dict):
            return web.json_response({'status': 'error', 'message': 'Expected a JSON object.'}, status=400)

    expected_hash = data.get('hash')
    if not expected_hash:
        expected_hash = repository_db.get_hash(repository_db.get_enabled_repository())

    logger.info(f"Applying updates on host ref='{ref}'")
    guidances = await orchestrator.apply_updates(host, expected_hash)
    return web.json_response({
        'status': 'success',
        'guidances': guidance.to_json(guidances),
    })
