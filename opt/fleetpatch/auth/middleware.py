"""
Authentication Middleware Module

Provides aiohttp middleware protecting two groups of endpoints:

- the member-internal endpoints the coordinator calls (host update reports,
  applying updates, host agent operations), which need a pool session;
- the coordinator's pool API (repositories, pool, hosts), which needs a
  pool API key.

The repository mirror under /repository/ is read by package managers and
is gated by the pool-repository permit instead.
"""

import logging
from typing import Callable, Optional

from aiohttp import web

from ..config import (
    APPLY_HOST_UPDATES_URI,
    GET_HOST_UPDATES_URI,
    HOST_AGENT_URI,
    POOL_API_URIS,
    SESSION_COOKIE,
)
from ..config_loader import get_local_host_ref
from .api_keys import API_KEY_PREFIX, verify_api_key
from .sessions import consume

logger = logging.getLogger(__name__)

# Endpoints that require a pool session
SESSION_ENDPOINTS = [
    GET_HOST_UPDATES_URI,
    APPLY_HOST_UPDATES_URI,
    HOST_AGENT_URI,
]

# Endpoints that require a pool API key
API_KEY_ENDPOINTS = list(POOL_API_URIS)


def extract_session_from_request(request: web.Request) -> Optional[str]:
    """
    Extract the pool session token from a request.

    Checks (in order):
    1. Cookie: session_id=<token>
    2. Authorization: Bearer <token>
    """
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token

    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:]

    return None


def extract_api_key_from_request(request: web.Request) -> Optional[str]:
    """
    Extract the pool API key from a request.

    Checks (in order):
    1. X-API-Key: <key>
    2. Authorization: Bearer <key>, for keys carrying the API key prefix
    """
    api_key = request.headers.get('X-API-Key', '')
    if api_key:
        return api_key

    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer ' + API_KEY_PREFIX):
        return auth_header[7:]

    return None


def _matches(path: str, endpoints) -> bool:
    for endpoint in endpoints:
        if path == endpoint or path.startswith(endpoint + '/'):
            return True
    return False


def requires_session(path: str) -> bool:
    """Check if an endpoint requires a pool session."""
    return _matches(path, SESSION_ENDPOINTS)


def requires_api_key(path: str) -> bool:
    """Check if an endpoint requires a pool API key."""
    return _matches(path, API_KEY_ENDPOINTS)


@web.middleware
async def auth_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    """
    Authentication middleware for aiohttp.

    Member-internal requests need a pool session bound to this host. Each
    session is accepted once, so a token that leaks after its call cannot
    be replayed. Pool API requests need a valid API key. The session or key
    is attached to the request.
    """
    if requires_session(request.path):
        token = extract_session_from_request(request)
        session = consume(token, host_ref=get_local_host_ref()) if token else None
        if not session:
            logger.warning(f"Unauthorized access attempt to {request.path}")
            return web.json_response(
                {'status': 'error', 'message': 'A valid pool session is required.'},
                status=401
            )
        request['session'] = session

    elif requires_api_key(request.path):
        key_info = verify_api_key(extract_api_key_from_request(request))
        if not key_info:
            logger.warning(f"Unauthorized access attempt to {request.path}")
            return web.json_response(
                {'status': 'error', 'message': 'Authentication required. Please provide a valid API key.'},
                status=401
            )
        request['api_key'] = key_info
        logger.debug(f"Authenticated request to {request.path} with API key {key_info['key_name']}")

    return await handler(request)
