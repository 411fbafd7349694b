"""
Repository management API handlers.

This module provides HTTP request handlers for the pool's repository
records, mirror sync, and serving the mirror to pool members.
"""

import os
import json
import logging
from aiohttp import web

from ..config_loader import get_pool_repo_dir
from ..models import repository as repository_db
from ..updater import sync
from ..updater.coordination import is_pool_repository_enabled

logger = logging.getLogger(__name__)


async def _read_json(request):
    try:
        data = await request.json()
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


async def list_repositories(request):
    """Returns the list of introduced repositories."""
    return web.json_response({
        'status': 'success',
        'repositories': repository_db.get_all_repositories(),
        'enabled': repository_db.get_enabled_repository_or_none(),
    })


async def introduce_repository(request):
    """Introduces a new repository."""
    data = await _read_json(request)
    if data is None:
        return web.json_response({'status': 'error', 'message': 'Invalid JSON body.'}, status=400)

    name_label = data.get('name_label')
    binary_url = data.get('binary_url')
    source_url = data.get('source_url')
    if not all([name_label, binary_url, source_url]):
        return web.json_response({
            'status': 'error',
            'message': 'Missing required fields: name_label, binary_url, source_url'
        }, status=400)

    ref = repository_db.introduce(
        name_label,
        data.get('name_description', ''),
        binary_url,
        source_url,
    )
    return web.json_response({'status': 'success', 'ref': ref}, status=201)


async def forget_repository(request):
    """Forgets a repository that is not enabled for the pool."""
    ref = request.match_info['ref']
    if repository_db.get_repository(ref) is None:
        return web.json_response({'status': 'error', 'message': f"Unknown repository {ref}"}, status=404)
    repository_db.forget(ref)
    return web.json_response({'status': 'success'})


async def set_pool_repository(request):
    """Enables a repository for the pool, or disables it with {"ref": null}."""
    data = await _read_json(request)
    if data is None or 'ref' not in data:
        return web.json_response({'status': 'error', 'message': 'Missing required field: ref'}, status=400)

    ref = data['ref']
    if ref is not None and repository_db.get_repository(ref) is None:
        return web.json_response({'status': 'error', 'message': f"Unknown repository {ref}"}, status=404)

    await sync.set_pool_repository(ref)
    return web.json_response({'status': 'success', 'enabled': ref})


async def sync_updates(request):
    """Syncs the pool's enabled repository. Body (optional): {"force": true}"""
    data = {}
    if request.can_read_body:
        data = await _read_json(request)
        if data is None:
            return web.json_response({'status': 'error', 'message': 'Invalid JSON body.'}, status=400)

    checksum = await sync.sync_updates(force=bool(data.get('force', False)))
    return web.json_response({'status': 'success', 'hash': checksum})


async def get_repository_file(request):
    """
    Serves a file of the pool repository mirror.

    Files are only served while the coordinator holds the pool repository
    open for its members.
    """
    if not is_pool_repository_enabled():
        return web.json_response({'status': 'error', 'message': 'Pool repository is not available.'}, status=403)

    repo_dir = os.path.realpath(get_pool_repo_dir())
    path = os.path.realpath(os.path.join(repo_dir, request.match_info.get('path', '')))
    if os.path.commonpath([repo_dir, path]) != repo_dir:
        logger.warning(f"Rejected repository path outside the mirror: {request.match_info.get('path')}")
        return web.json_response({'status': 'error', 'message': 'Forbidden.'}, status=403)

    if not os.path.isfile(path):
        return web.json_response({'status': 'error', 'message': 'Not found.'}, status=404)

    return web.FileResponse(path)
