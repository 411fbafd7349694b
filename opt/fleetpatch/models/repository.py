"""
Repository records and the pool's enabled repository.

A repository record describes one upstream package repository:

    ref, name_label, name_description, binary_url, source_url,
    hash (checksum of the last synced update-info metadata),
    up_to_date (no host had pending updates at the last sync)

Names and binary URLs are unique. At most one repository is enabled for
the pool at a time; it cannot be forgotten while enabled.
"""

import uuid
import logging
from typing import Dict, List, Optional
from urllib.parse import urlparse

from ..errors import (
    InvalidRepositoryUrl,
    NoRepositoryEnabled,
    RepositoryAlreadyExists,
    RepositoryInUse,
)
from .database import transaction

logger = logging.getLogger(__name__)


def assert_url_is_valid(url: str) -> None:
    """Raises InvalidRepositoryUrl unless url is an http(s) URL with a host."""
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidRepositoryUrl(url) from e
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        logger.error(f"Invalid repository URL: {url}")
        raise InvalidRepositoryUrl(url)


def introduce(name_label: str, name_description: str, binary_url: str, source_url: str) -> str:
    """
    Create a repository record.

    Returns:
        str: Reference of the new repository

    Raises:
        InvalidRepositoryUrl: if either URL is invalid
        RepositoryAlreadyExists: if the name or binary URL is already used
    """
    assert_url_is_valid(binary_url)
    assert_url_is_valid(source_url)

    with transaction(write=True) as db:
        for ref, repo in db['repositories'].items():
            if repo['name_label'] == name_label or repo['binary_url'] == binary_url:
                logger.error(f"Repository {name_label} ({binary_url}) clashes with {ref}")
                raise RepositoryAlreadyExists(ref)

        ref = f"OpaqueRef:{uuid.uuid4()}"
        db['repositories'][ref] = {
            'ref': ref,
            'uuid': str(uuid.uuid4()),
            'name_label': name_label,
            'name_description': name_description,
            'binary_url': binary_url,
            'source_url': source_url,
            'hash': '',
            'up_to_date': False,
        }

    logger.info(f"Introduced repository {name_label} as {ref}")
    return ref


def forget(ref: str) -> None:
    """
    Destroy a repository record.

    Raises:
        RepositoryInUse: if the repository is the pool's enabled one
    """
    with transaction(write=True) as db:
        if db['pool'].get('repository') == ref:
            raise RepositoryInUse(ref)
        db['repositories'].pop(ref, None)
    logger.info(f"Forgot repository {ref}")


def get_all_repositories() -> List[Dict]:
    with transaction() as db:
        return list(db['repositories'].values())


def get_repository(ref: str) -> Optional[Dict]:
    with transaction() as db:
        return db['repositories'].get(ref)


def _set_field(ref: str, key: str, value) -> None:
    with transaction(write=True) as db:
        if ref not in db['repositories']:
            raise KeyError(f"Unknown repository {ref}")
        db['repositories'][ref][key] = value


def set_hash(ref: str, value: str) -> None:
    _set_field(ref, 'hash', value)


def get_hash(ref: str) -> str:
    repo = get_repository(ref)
    return repo['hash'] if repo else ''


def set_up_to_date(ref: str, value: bool) -> None:
    _set_field(ref, 'up_to_date', value)


def get_enabled_repository() -> str:
    """
    Get the pool's enabled repository.

    Raises:
        NoRepositoryEnabled: if none is enabled
    """
    with transaction() as db:
        ref = db['pool'].get('repository')
    if not ref:
        raise NoRepositoryEnabled()
    return ref


def get_enabled_repository_or_none() -> Optional[str]:
    with transaction() as db:
        return db['pool'].get('repository')


def set_enabled_repository(ref: Optional[str]) -> None:
    """Enable a repository for the pool (None disables the current one)."""
    with transaction(write=True) as db:
        if ref is not None and ref not in db['repositories']:
            raise KeyError(f"Unknown repository {ref}")
        db['pool']['repository'] = ref
    logger.info(f"Pool repository set to {ref}")
