"""
Dynamic Configuration Loader for fleetpatch.

This module provides runtime configuration loading from JSON files with:
- Default values if files don't exist
- Caching with ability to reload
- Path creation on save
"""

import os
import json
import secrets
import logging
from typing import Dict, Any, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

# --- Configuration Directory Paths ---
CONFIG_BASE_DIR = '/etc/fleetpatch'
CONFIG_DIR = os.path.join(CONFIG_BASE_DIR, 'config')
DATA_DIR = os.path.join(CONFIG_BASE_DIR, 'data')

# --- Configuration File Paths ---
REPOSITORY_CONFIG_PATH = os.path.join(CONFIG_DIR, 'repository.json')
POOL_CONFIG_PATH = os.path.join(CONFIG_DIR, 'pool.json')

# --- Data File Paths ---
POOL_DATABASE_PATH = os.path.join(DATA_DIR, 'pool.json')
API_KEYS_PATH = os.path.join(DATA_DIR, 'api_keys.json')

# --- Default Configurations ---
DEFAULT_REPOSITORY_CONFIG = {
    'local_pool_repo_dir': '/var/lib/fleetpatch/pool-repository',
    'pool_repo_name': 'remote',
    'local_repo_name': 'local',
    'yum_repos_config_dir': '/etc/yum.repos.d',
    'yum_cache_dir': '/var/cache/yum/x86_64/7',
    'repository_gpgcheck': True,
    'reposync_cmd': '/usr/bin/reposync',
    'createrepo_cmd': '/usr/bin/createrepo_c',
    'modifyrepo_cmd': '/usr/bin/modifyrepo_c',
    'yum_cmd': '/usr/bin/yum',
    'yum_config_manager_cmd': '/usr/bin/yum-config-manager',
    'rpm_cmd': '/usr/bin/rpm',
}

DEFAULT_POOL_CONFIG = {
    'local_host_ref': None,
    'coordinator_address': '127.0.0.1',
    'https_port': 443,
    'member_scheme': 'https',
    'verify_cert': False,
    'session_secret': None,  # Will be auto-generated
    'session_algorithm': 'HS256',
    'session_timeout_minutes': 10,
    'toolstack_service': 'fleetpatch-agent',
    'libvirt_uri': 'qemu:///system',
}

# --- Configuration Cache ---
_config_cache: Dict[str, Any] = {}


def _get_config(path: str, default: Dict[str, Any]) -> Dict[str, Any]:
    """
    Load configuration from path merged over the defaults.

    Args:
        path: The configuration file path
        default: Default configuration values

    Returns:
        dict: The loaded configuration merged with defaults
    """
    config = default.copy()

    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                config.update(json.load(f))
        except Exception as e:
            logger.warning(f"Error loading config from {path}: {e}")

    return config


def _save_config(path: str, config: Dict[str, Any], permissions: int = 0o644) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        path: Path to save the configuration
        config: Configuration dictionary to save
        permissions: File permissions (default 0o644)

    Returns:
        bool: True if saved successfully
    """
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config, f, indent=2)

        os.chmod(path, permissions)
        return True
    except Exception as e:
        logger.error(f"Failed to save config to {path}: {e}")
        return False


def get_repository_config(force_reload: bool = False) -> Dict[str, Any]:
    """
    Get repository configuration.

    Args:
        force_reload: If True, bypass cache and reload from disk

    Returns:
        dict: Repository configuration with keys:
            - local_pool_repo_dir: Root directory of the pool mirror
            - pool_repo_name: Repository id of the upstream mirror
            - local_repo_name: Repository id hosts install from
            - yum_repos_config_dir: Where repository .repo files live
            - yum_cache_dir: Package manager metadata cache root
            - repository_gpgcheck: Whether mirrored metadata is GPG-checked
            - *_cmd: Paths of the external tools
    """
    cache_key = 'repository'

    if not force_reload and cache_key in _config_cache:
        return _config_cache[cache_key]

    config = _get_config(REPOSITORY_CONFIG_PATH, DEFAULT_REPOSITORY_CONFIG)

    _config_cache[cache_key] = config
    return config


def save_repository_config(config: Dict[str, Any]) -> bool:
    """Save repository configuration."""
    full_config = DEFAULT_REPOSITORY_CONFIG.copy()
    full_config.update(config)

    if _save_config(REPOSITORY_CONFIG_PATH, full_config):
        _config_cache['repository'] = full_config
        return True
    return False


def get_pool_config(force_reload: bool = False) -> Dict[str, Any]:
    """
    Get pool membership and session configuration.

    A session secret is generated and persisted the first time the
    configuration is read without one.

    Args:
        force_reload: If True, bypass cache and reload from disk

    Returns:
        dict: Pool configuration
    """
    cache_key = 'pool'

    if not force_reload and cache_key in _config_cache:
        return _config_cache[cache_key]

    config = _get_config(POOL_CONFIG_PATH, DEFAULT_POOL_CONFIG)

    if not config.get('session_secret'):
        config['session_secret'] = secrets.token_urlsafe(64)
        if _save_config(POOL_CONFIG_PATH, config, permissions=0o600):
            logger.info("Created pool configuration with generated session secret")

    _config_cache[cache_key] = config
    return config


def save_pool_config(config: Dict[str, Any]) -> bool:
    """Save pool configuration with restrictive permissions."""
    full_config = DEFAULT_POOL_CONFIG.copy()
    full_config.update(config)

    if _save_config(POOL_CONFIG_PATH, full_config, permissions=0o600):
        _config_cache['pool'] = full_config
        return True
    return False


def clear_cache(config_type: Optional[str] = None):
    """
    Clear the configuration cache.

    Args:
        config_type: Specific configuration type to clear, or None to clear all
    """
    global _config_cache

    if config_type:
        _config_cache.pop(config_type, None)
    else:
        _config_cache = {}


# --- Convenience functions for getting specific values ---

def get_pool_repo_dir() -> str:
    """Get the directory holding the mirrored pool repository."""
    config = get_repository_config()
    return os.path.join(config['local_pool_repo_dir'], config['pool_repo_name'])


def get_pool_repo_name() -> str:
    """Get the repository id of the upstream mirror."""
    return get_repository_config()['pool_repo_name']


def get_local_repo_name() -> str:
    """Get the repository id hosts install updates from."""
    return get_repository_config()['local_repo_name']


def get_local_host_ref() -> Optional[str]:
    """Get the database reference of this host."""
    return get_pool_config()['local_host_ref']


def get_database_path() -> str:
    """Get the pool database file path."""
    return POOL_DATABASE_PATH


def get_api_keys_path() -> str:
    """Get the pool API key store path."""
    return API_KEYS_PATH
