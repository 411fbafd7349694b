"""
Coordinator-to-member calls.

Every call opens a pool session against the target host right before the
request and closes it right after, whatever the outcome.
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..auth.sessions import host_session
from ..config import APPLY_HOST_UPDATES_URI, GET_HOST_UPDATES_URI, HOST_AGENT_URI, SESSION_COOKIE
from ..config_loader import get_pool_config

logger = logging.getLogger(__name__)

# Package upgrades and migrations can take a long time; only bound the connect
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=30)


def get_host_url(host: Dict, path: str) -> str:
    config = get_pool_config()
    scheme = config.get('member_scheme', 'https')
    port = host.get('port') or config['https_port']
    return f"{scheme}://{host['address']}:{port}{path}"


async def request(host: Dict, method: str, path: str, params: Optional[Dict] = None) -> Any:
    """
    Call a member-internal endpoint of a host.

    Args:
        host: Host record (ref, hostname, address)
        method: HTTP method
        path: Endpoint path
        params: Optional query parameters

    Returns:
        The decoded JSON response body

    Raises:
        aiohttp.ClientError: on transport failures or non-2xx responses
    """
    url = get_host_url(host, path)
    ssl = None if get_pool_config().get('verify_cert') else False
    logger.debug(f"{method} {url} on host {host.get('hostname')} (ref {host['ref']})")

    async with host_session(host['ref']) as token:
        async with aiohttp.ClientSession(cookies={SESSION_COOKIE: token},
                                         timeout=REQUEST_TIMEOUT) as session:
            async with session.request(method, url, params=params, ssl=ssl) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)


async def get_host_updates(host: Dict, installed: bool) -> Dict:
    return await request(host, 'GET', GET_HOST_UPDATES_URI,
                         params={'installed': 'true' if installed else 'false'})


async def apply_updates(host: Dict) -> Dict:
    return await request(host, 'POST', APPLY_HOST_UPDATES_URI)


async def reboot(host: Dict) -> Dict:
    return await request(host, 'POST', f"{HOST_AGENT_URI}/reboot")


async def restart_agent(host: Dict) -> Dict:
    return await request(host, 'POST', f"{HOST_AGENT_URI}/restart-agent")


async def get_resident_vms(host: Dict) -> List[Dict]:
    result = await request(host, 'GET', f"{HOST_AGENT_URI}/vms")
    return result['vms']


async def migrate_vm_locally(host: Dict, vm_uuid: str) -> Dict:
    return await request(host, 'POST', f"{HOST_AGENT_URI}/vms/{vm_uuid}/migrate")
