"""
Error taxonomy for fleetpatch.

Every failure the update engine reports is one of the named errors below.
Each carries the repository or host identity needed to act on it, the HTTP
status the API answers with, and a stable code string for clients.
"""

from typing import Any, Dict, Iterable, Optional


class FleetPatchError(Exception):
    """Base exception for all update engine errors."""

    code = 'internal_error'
    status_code = 500

    def __init__(self, message: Optional[str] = None, **params: Any) -> None:
        self.message = message or type(self).__doc__.strip().splitlines()[0]
        self.params = params
        super().__init__(self.message)

    def __str__(self) -> str:
        if not self.params:
            return self.message
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.message} ({params_str})"

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the error for an API response."""
        return {
            'status': 'error',
            'code': self.code,
            'message': self.message,
            'params': self.params,
        }


# --- Repository records ---

class InvalidRepositoryUrl(FleetPatchError):
    """Repository URL is not a valid http(s) URL."""

    code = 'invalid_repository_url'
    status_code = 400

    def __init__(self, url: str) -> None:
        super().__init__(url=url)


class RepositoryAlreadyExists(FleetPatchError):
    """A repository with the same name or binary URL already exists."""

    code = 'repository_already_exists'
    status_code = 409

    def __init__(self, repository: str) -> None:
        super().__init__(repository=repository)


class RepositoryInUse(FleetPatchError):
    """The repository is enabled for the pool and cannot be forgotten."""

    code = 'repository_is_in_use'
    status_code = 409

    def __init__(self, repository: str) -> None:
        super().__init__(repository=repository)


class NoRepositoryEnabled(FleetPatchError):
    """No repository is enabled for the pool."""

    code = 'no_repository_enabled'
    status_code = 409


# --- Host records ---

class HostAlreadyExists(FleetPatchError):
    """A host with the same reference is already registered."""

    code = 'host_already_exists'
    status_code = 409

    def __init__(self, host: str) -> None:
        super().__init__(host=host)


# --- Mirror lifecycle ---

class SyncAlreadyInProgress(FleetPatchError):
    """A repository sync is already in progress, retry later."""

    code = 'reposync_in_progress'
    status_code = 409


class RepositoryCleanupFailed(FleetPatchError):
    """Failed to clean up the pool repository mirror."""

    code = 'repository_cleanup_failed'


class SyncFailed(FleetPatchError):
    """Failed to sync with the remote repository."""

    code = 'reposync_failed'


class InvalidUpdateInfoDocument(FleetPatchError):
    """Repository metadata or update-info document is invalid."""

    code = 'invalid_updateinfo_xml'


class MetadataRebuildFailed(FleetPatchError):
    """Failed to rebuild the local pool repository metadata."""

    code = 'createrepo_failed'


class RepositoryOutOfSync(MetadataRebuildFailed):
    """Repository state is stale, re-sync required."""

    code = 'repository_out_of_sync'

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(expected=expected, actual=actual)


# --- Update queries and application ---

class GetHostUpdatesFailed(FleetPatchError):
    """Failed to get updates of host."""

    code = 'get_host_updates_failed'

    def __init__(self, host: Optional[str]) -> None:
        super().__init__(host=host)


class GetPoolUpdatesFailed(FleetPatchError):
    """Failed to get updates of the pool."""

    code = 'get_updates_failed'


class ApplyUpdatesFailed(FleetPatchError):
    """Failed to apply updates on host."""

    code = 'apply_updates_failed'

    def __init__(self, host: Optional[str]) -> None:
        super().__init__(host=host)


class InvalidGuidanceCombination(FleetPatchError):
    """Invalid combination of guidances for host."""

    code = 'invalid_guidance'

    def __init__(self, host: Optional[str], guidances: Iterable[str] = ()) -> None:
        super().__init__(host=host, guidances=sorted(guidances))


class ApplyGuidanceFailed(FleetPatchError):
    """Failed to apply guidance on host."""

    code = 'apply_guidance_failed'

    def __init__(self, host: Optional[str], vms: Iterable[str] = ()) -> None:
        super().__init__(host=host, vms=list(vms))


# --- External tools ---

class CommandFailedError(Exception):
    """An external command exited unsuccessfully.

    Not part of the taxonomy: components translate it into their own named
    error at their boundary.
    """

    def __init__(self, command: str, returncode: int, stderr: str) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{command} exited with {returncode}: {stderr.strip()}")
