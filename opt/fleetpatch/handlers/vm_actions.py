"""
VM action handlers.

This module provides the member-internal handlers listing the VMs resident
on this host and restarting a VM's device model on this host.
"""

import logging
import libvirt
from aiohttp import web

from ..utils.libvirt_connection import (
    get_domain_by_uuid,
    get_resident_vms,
    libvirt_connection,
    restart_device_model,
)

logger = logging.getLogger(__name__)


async def list_resident_vms(request):
    """Returns the records of the VMs resident on this host."""
    try:
        with libvirt_connection() as conn:
            vms = get_resident_vms(conn)
    except ConnectionError as e:
        return web.json_response({'status': 'error', 'message': str(e)}, status=500)
    return web.json_response({'status': 'success', 'vms': vms})


async def migrate_vm(request):
    """Restarts a VM's device model, by local live migration where the driver allows it."""
    uuid = request.match_info['uuid']
    try:
        with libvirt_connection() as conn:
            domain = get_domain_by_uuid(conn, uuid)
            if not domain:
                return web.json_response({'status': 'error', 'message': f"VM '{uuid}' not found."}, status=404)
            method = restart_device_model(conn, domain)
    except ConnectionError as e:
        return web.json_response({'status': 'error', 'message': str(e)}, status=500)
    except libvirt.libvirtError as e:
        logger.error(f"Restarting the device model of VM '{uuid}' failed: {e}")
        return web.json_response({
            'status': 'error',
            'message': f"Failed to restart device model of VM '{uuid}': {e}"
        }, status=500)

    return web.json_response({'status': 'success', 'uuid': uuid, 'method': method})
