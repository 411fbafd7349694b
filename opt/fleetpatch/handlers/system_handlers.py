"""
Host agent system handlers.

This module provides the member-internal handlers the coordinator calls to
reboot a host or restart its agent while executing update guidances.

Note: These use systemctl. The service account must be allowed to run
'systemctl reboot' and 'systemctl restart <agent service>'.
"""

import asyncio
import logging
import subprocess
from aiohttp import web

from ..config_loader import get_pool_config

logger = logging.getLogger(__name__)

# Scheduled restarts, referenced until they finish
_background_tasks = set()


async def reboot_host(request):
    """Reboots this host."""
    try:
        logger.info("Host reboot requested by the pool coordinator")

        # Popen so the response is sent before the host goes down
        subprocess.Popen(['systemctl', 'reboot'],
                         stdout=subprocess.DEVNULL,
                         stderr=subprocess.DEVNULL)

        return web.json_response({
            'status': 'success',
            'message': 'Host reboot initiated'
        })
    except Exception as e:
        logger.error(f"Error initiating host reboot: {e}")
        return web.json_response({
            'status': 'error',
            'message': f'Failed to reboot host: {str(e)}'
        }, status=500)


def schedule_service_restart(delay_seconds=2):
    """Schedules an agent restart after a delay."""
    service_name = get_pool_config()['toolstack_service']

    async def restart_service():
        await asyncio.sleep(delay_seconds)
        try:
            process = await asyncio.create_subprocess_exec(
                'systemctl', 'restart', service_name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL
            )
            await process.wait()
            logger.info(f"Service {service_name} restart triggered")
        except Exception as e:
            logger.error(f"Failed to restart service {service_name}: {e}")

    task = asyncio.create_task(restart_service())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def restart_agent(request):
    """Restarts this host's agent once the response is sent."""
    logger.info("Agent restart requested by the pool coordinator")
    schedule_service_restart()
    return web.json_response({
        'status': 'success',
        'message': 'Agent restart scheduled'
    })
