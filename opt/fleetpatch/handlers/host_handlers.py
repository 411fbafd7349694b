"""
Pool membership API handlers.
"""

import json
from aiohttp import web

from ..models import host as host_db


async def list_hosts(request):
    """Returns the pool's hosts."""
    return web.json_response({'status': 'success', 'hosts': host_db.get_all_hosts()})


async def add_host(request):
    """Registers a host with the pool."""
    try:
        data = await request.json()
    except json.JSONDecodeError:
        return web.json_response({'status': 'error', 'message': 'Invalid JSON body.'}, status=400)
    if not isinstance(data, dict):
        return web.json_response({'status': 'error', 'message': 'Expected a JSON object.'}, status=400)

    hostname = data.get('hostname')
    address = data.get('address')
    if not all([hostname, address]):
        return web.json_response({
            'status': 'error',
            'message': 'Missing required fields: hostname, address'
        }, status=400)

    host = host_db.add_host(hostname, address, ref=data.get('ref'))
    return web.json_response({'status': 'success', 'host': host}, status=201)
