"""
fleetpatch - Main Entry Point

This is the entry point of the fleetpatch agent. The same server runs on
every pool member (host update reports, host agent operations) and, on the
coordinator, also serves the pool repository mirror and the pool API.

The pool API requires an API key; create one on the coordinator with
`fleetpatch create-api-key NAME`.
"""

import sys
import logging
import argparse
from aiohttp import web

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

from .config import API_HOST, API_PORT, GET_REPOSITORY_URI
from .config_loader import get_pool_config
from .errors import FleetPatchError

# Import handlers
from .handlers.update_handlers import (
    get_host_updates, apply_host_updates,
    get_pool_updates, apply_updates_handler
)
from .handlers.repository_handlers import (
    list_repositories, introduce_repository, forget_repository,
    set_pool_repository, sync_updates, get_repository_file
)
from .handlers.host_handlers import list_hosts, add_host
from .handlers.system_handlers import reboot_host, restart_agent
from .handlers.vm_actions import list_resident_vms, migrate_vm

# Import authentication middleware
from .auth.middleware import auth_middleware
from .auth.api_keys import create_api_key, list_api_keys, revoke_api_key

# Import utilities for initialization
from .utils.libvirt_connection import get_connection


@web.middleware
async def error_middleware(request, handler):
    """Renders update engine errors as JSON responses with their HTTP status."""
    try:
        return await handler(request)
    except FleetPatchError as e:
        logger.error(f"{request.method} {request.path} failed: {e}")
        return web.json_response(e.to_dict(), status=e.status_code)


def init_app():
    """Initializes the Aiohttp application with routes."""
    app = web.Application()

    # Applied in order: errors outermost, then authentication
    app.middlewares.append(error_middleware)
    app.middlewares.append(auth_middleware)

    # ---< Member-internal Routes >---
    # Host update reports
    app.router.add_get('/updates', get_host_updates)
    app.router.add_post('/updates/apply', apply_host_updates)

    # Host agent
    app.router.add_post('/api/host/reboot', reboot_host)
    app.router.add_post('/api/host/restart-agent', restart_agent)
    app.router.add_get('/api/host/vms', list_resident_vms)
    app.router.add_post('/api/host/vms/{uuid}/migrate', migrate_vm)

    # ---< Coordinator Routes >---
    # Pool repository mirror
    app.router.add_get(GET_REPOSITORY_URI + '{path:.*}', get_repository_file)

    # Repository Management
    app.router.add_get('/api/repositories', list_repositories)
    app.router.add_post('/api/repositories', introduce_repository)
    app.router.add_delete('/api/repositories/{ref}', forget_repository)

    # Pool
    app.router.add_put('/api/pool/repository', set_pool_repository)
    app.router.add_post('/api/pool/sync-updates', sync_updates)
    app.router.add_get('/api/pool/updates', get_pool_updates)

    # Hosts
    app.router.add_get('/api/hosts', list_hosts)
    app.router.add_post('/api/hosts', add_host)
    app.router.add_post('/api/hosts/{ref}/apply-updates', apply_updates_handler)

    return app


def serve():
    # Log connection attempt status
    conn = get_connection()
    if conn:
        logger.info("Successfully connected to libvirt. fleetpatch agent ready.")
        conn.close()
    else:
        logger.critical("Failed to connect to libvirt. Ensure libvirt is installed and the service is running.")

    port = get_pool_config().get('https_port', API_PORT)
    app = init_app()
    web.run_app(app, host=API_HOST, port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fleetpatch',
        description="fleetpatch - pool software update agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fleetpatch                                 # Run the agent
  fleetpatch create-api-key ops --description "patch pipeline"
  fleetpatch list-api-keys
  fleetpatch revoke-api-key KEY_ID
        """,
    )
    subparsers = parser.add_subparsers(dest='command')

    create = subparsers.add_parser('create-api-key', help="Create a pool API key and print it once")
    create.add_argument('name', help="Friendly name of the key")
    create.add_argument('--description', default='', help="What the key is used for")

    subparsers.add_parser('list-api-keys', help="List pool API keys")

    revoke = subparsers.add_parser('revoke-api-key', help="Revoke a pool API key")
    revoke.add_argument('key_id', help="Id of the key, as shown by list-api-keys")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == 'create-api-key':
        key = create_api_key(args.name, description=args.description)
        print(f"{key['id']} {key['key']}")
        return 0

    if args.command == 'list-api-keys':
        for key in list_api_keys():
            state = 'revoked' if key['revoked'] else 'active'
            print(f"{key['id']} {key['name']} {state} created={key['created_at']} "
                  f"last_used={key['last_used_at']}")
        return 0

    if args.command == 'revoke-api-key':
        if not revoke_api_key(args.key_id):
            print(f"Unknown API key {args.key_id}", file=sys.stderr)
            return 1
        return 0

    serve()
    return 0


if __name__ == '__main__':
    sys.exit(main())
