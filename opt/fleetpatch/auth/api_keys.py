"""
Pool API Key Management Module

Handles creation, validation and revocation of the API keys operators use
to call the coordinator's pool API (repositories, pool sync and updates,
hosts). Only bcrypt hashes of the keys are stored.
"""

import json
import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import bcrypt

from ..config_loader import get_api_keys_path

logger = logging.getLogger(__name__)

# API key prefix for identification
API_KEY_PREFIX = 'fpk_'


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_api_keys() -> dict:
    """Load API keys from storage file."""
    keys_path = Path(get_api_keys_path())
    if not keys_path.exists():
        return {'keys': []}

    with open(keys_path, 'r') as f:
        return json.load(f)


def save_api_keys(data: dict) -> None:
    """Save API keys to storage file, readable by root only."""
    keys_path = Path(get_api_keys_path())
    keys_path.parent.mkdir(parents=True, exist_ok=True)
    with open(keys_path, 'w') as f:
        json.dump(data, f, indent=2)
    keys_path.chmod(0o600)


def hash_api_key(api_key: str) -> str:
    return bcrypt.hashpw(api_key.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def verify_api_key_hash(api_key: str, hashed_key: str) -> bool:
    try:
        return bcrypt.checkpw(api_key.encode('utf-8'), hashed_key.encode('utf-8'))
    except ValueError as e:
        logger.error(f"Error verifying API key: {e}")
        return False


def generate_api_key() -> str:
    """Generate a new random API key with the pool prefix."""
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def create_api_key(name: str, description: str = '') -> Dict[str, Any]:
    """
    Create a new pool API key.

    Args:
        name: A friendly name for the key
        description: Optional description of the key's purpose

    Returns:
        dict: The created key information, including the plain key. This
        is the only time the plain key is available.
    """
    api_key = generate_api_key()
    key_data = {
        'id': secrets.token_urlsafe(16),
        'name': name,
        'description': description,
        'hashed_key': hash_api_key(api_key),
        'created_at': _now(),
        'last_used_at': None,
        'revoked': False,
    }

    data = load_api_keys()
    data['keys'].append(key_data)
    save_api_keys(data)
    logger.info(f"Created pool API key '{name}'")

    return {
        'id': key_data['id'],
        'key': api_key,
        'name': name,
        'description': description,
        'created_at': key_data['created_at'],
    }


def verify_api_key(api_key: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Verify a pool API key.

    Returns:
        dict: The key's id and name if valid, None otherwise
    """
    if not api_key or not api_key.startswith(API_KEY_PREFIX):
        return None

    data = load_api_keys()
    for key_data in data['keys']:
        if key_data.get('revoked', False):
            continue

        if verify_api_key_hash(api_key, key_data['hashed_key']):
            key_data['last_used_at'] = _now()
            save_api_keys(data)
            logger.debug(f"Valid pool API key used: {key_data['name']}")
            return {'key_id': key_data['id'], 'key_name': key_data['name']}

    logger.warning("Invalid or revoked pool API key attempted")
    return None


def list_api_keys() -> List[Dict[str, Any]]:
    """List the pool API keys without their hashes."""
    return [
        {
            'id': key_data['id'],
            'name': key_data['name'],
            'description': key_data['description'],
            'created_at': key_data['created_at'],
            'last_used_at': key_data['last_used_at'],
            'revoked': key_data.get('revoked', False),
        }
        for key_data in load_api_keys()['keys']
    ]


def revoke_api_key(key_id: str) -> bool:
    """
    Revoke a pool API key.

    Returns:
        bool: True if the key was found and revoked
    """
    data = load_api_keys()
    for key_data in data['keys']:
        if key_data['id'] == key_id:
            key_data['revoked'] = True
            key_data['revoked_at'] = _now()
            save_api_keys(data)
            logger.info(f"Revoked pool API key '{key_data['name']}'")
            return True

    logger.warning(f"Failed to revoke unknown pool API key {key_id}")
    return False
