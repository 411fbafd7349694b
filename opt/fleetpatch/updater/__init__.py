"""
Updater package for fleetpatch.

This package contains the pool update engine:
- Guidance evaluation and validation
- Repository metadata parsing and checksum validation
- Mirror sync and local repository rebuild
- Per-host update queries and bounded pool fan-out
- Pool update orchestration (status, consolidation, apply, guidance)
"""

from .guidance import (
    Guidance,
    GuidanceKind,
    evaluate,
    assert_valid,
)

from .metadata import (
    parse_metadata_index,
    parse_updateinfo,
    validate_checksum,
)

from .host_query import (
    query_local,
    query_remote,
    apply_local,
)

from .fanout import run_all

from .sync import (
    sync_repository,
    sync_updates,
    cleanup_pool_mirror,
    create_local_repository,
    set_pool_repository,
)

from .orchestrator import (
    compute_pool_update_status,
    consolidate_pool_updates,
    apply_to_host,
    execute_guidance,
    apply_updates,
)

__all__ = [
    # Guidance
    'Guidance',
    'GuidanceKind',
    'evaluate',
    'assert_valid',
    # Metadata
    'parse_metadata_index',
    'parse_updateinfo',
    'validate_checksum',
    # Host queries
    'query_local',
    'query_remote',
    'apply_local',
    # Fan-out
    'run_all',
    # Mirror lifecycle
    'sync_repository',
    'sync_updates',
    'cleanup_pool_mirror',
    'create_local_repository',
    'set_pool_repository',
    # Orchestration
    'compute_pool_update_status',
    'consolidate_pool_updates',
    'apply_to_host',
    'execute_guidance',
    'apply_updates',
]
