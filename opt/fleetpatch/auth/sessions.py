"""
Privileged pool sessions.

A session is a JWT signed with the pool's shared session secret and bound
to the host it was opened for. Sessions expire after
session_timeout_minutes; logging out revokes the token before expiry.
Members accept each session once (consume), so a session the coordinator
has logged out cannot be replayed against the member either.
"""

import logging
import secrets
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, Optional

import jwt

from ..config_loader import get_pool_config

logger = logging.getLogger(__name__)

_revoked_lock = threading.Lock()
# jti -> expiry of logged out or used sessions, pruned on every update
_revoked: Dict[str, datetime] = {}


def _prune_revoked() -> None:
    # Caller holds _revoked_lock
    now = datetime.now(timezone.utc)
    for jti in [j for j, exp in _revoked.items() if exp < now]:
        del _revoked[jti]


def login(host_ref: str) -> str:
    """
    Open a privileged session against a host.

    Args:
        host_ref: Reference of the host the session is valid for

    Returns:
        str: The session token
    """
    config = get_pool_config()
    now = datetime.now(timezone.utc)
    payload = {
        'host': host_ref,
        'pool': True,
        'iat': now,
        'exp': now + timedelta(minutes=config.get('session_timeout_minutes', 10)),
        'jti': secrets.token_urlsafe(16),
    }
    token = jwt.encode(
        payload,
        config['session_secret'],
        algorithm=config.get('session_algorithm', 'HS256')
    )
    logger.debug(f"Opened pool session for host {host_ref}")
    return token


def verify(token: str, host_ref: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Verify a session token.

    Args:
        token: The session token
        host_ref: If given, the host the session must be bound to

    Returns:
        dict: The decoded session, or None if invalid, expired or revoked
    """
    config = get_pool_config()
    try:
        payload = jwt.decode(
            token,
            config['session_secret'],
            algorithms=[config.get('session_algorithm', 'HS256')]
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Pool session verification failed: session expired")
        return None
    except jwt.InvalidTokenError:
        logger.warning("Pool session verification failed: invalid token")
        return None

    with _revoked_lock:
        if payload.get('jti') in _revoked:
            logger.warning("Pool session verification failed: session logged out")
            return None

    if host_ref is not None and payload.get('host') != host_ref:
        logger.warning(f"Pool session for {payload.get('host')} presented to {host_ref}")
        return None

    return payload


def consume(token: str, host_ref: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Verify a session token and accept it only once.

    The coordinator opens one session per member call, so the member
    records the session's jti on first use and refuses it afterwards.

    Returns:
        dict: The decoded session, or None if invalid or already used
    """
    payload = verify(token, host_ref=host_ref)
    if payload is None:
        return None

    jti = payload.get('jti')
    with _revoked_lock:
        _prune_revoked()
        if jti in _revoked:
            logger.warning("Pool session verification failed: session already used")
            return None
        _revoked[jti] = datetime.fromtimestamp(payload['exp'], timezone.utc)
    return payload


def logout(token: str) -> None:
    """Revoke a session token."""
    try:
        payload = jwt.decode(token, options={'verify_signature': False, 'verify_exp': False})
    except jwt.InvalidTokenError as e:
        logger.warning(f"Ignoring logout of malformed session: {e}")
        return

    now = datetime.now(timezone.utc)
    with _revoked_lock:
        _prune_revoked()
        exp = payload.get('exp')
        expiry = datetime.fromtimestamp(exp, timezone.utc) if exp else now
        _revoked[payload.get('jti')] = expiry
    logger.debug(f"Closed pool session for host {payload.get('host')}")


@asynccontextmanager
async def host_session(host_ref: str) -> AsyncIterator[str]:
    """Open a session for the duration of the block, closing it on every exit path."""
    token = login(host_ref)
    try:
        yield token
    finally:
        logout(token)
