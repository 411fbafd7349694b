"""
Pending package updates of a host.

An Update is one package a host would upgrade from the local repository,
tied to the update-info entry that ships it. Updates are produced per host
query and never persisted.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from . import guidance
from .guidance import GuidanceKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Update:
    name: str
    arch: str
    new_version: str
    new_release: str
    update_id: Optional[str] = None
    repository: str = ''
    old_version: Optional[str] = None
    old_release: Optional[str] = None

    @property
    def rpm(self) -> str:
        return f"{self.name}-{self.new_version}-{self.new_release}.{self.arch}.rpm"

    def to_json(self) -> Dict:
        return {
            'name': self.name,
            'arch': self.arch,
            'oldVersion': self.old_version,
            'oldRelease': self.old_release,
            'newVersion': self.new_version,
            'newRelease': self.new_release,
            'updateId': self.update_id,
            'repository': self.repository,
        }

    @classmethod
    def of_json(cls, data: Dict) -> 'Update':
        return cls(
            name=data['name'],
            arch=data['arch'],
            new_version=data['newVersion'],
            new_release=data['newRelease'],
            update_id=data.get('updateId'),
            repository=data.get('repository', ''),
            old_version=data.get('oldVersion'),
            old_release=data.get('oldRelease'),
        )


def get_updates_from_updateinfo(updates_info) -> Dict[str, List[Tuple[str, object]]]:
    """
    Index update-info entries by the packages they ship.

    Returns:
        dict: 'name.arch' -> list of (update id, UpdatePackage)
    """
    rpm2updates: Dict[str, List[Tuple[str, object]]] = {}
    for update_id, info in updates_info.items():
        for pkg in info.packages:
            rpm2updates.setdefault(pkg.name_arch, []).append((update_id, pkg))
    return rpm2updates


def _split_version(evr: str) -> Optional[Tuple[str, str]]:
    # '[epoch:]version-release'
    if ':' in evr:
        evr = evr.split(':', 1)[1]
    if '-' not in evr:
        return None
    version, release = evr.rsplit('-', 1)
    return version, release


def parse_installed_pkgs(output: str) -> Dict[str, Tuple[str, str]]:
    """
    Parse 'name.arch version release' lines into a lookup table.

    Returns:
        dict: 'name.arch' -> (version, release)
    """
    installed = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 3:
            continue
        name_arch, version, release = parts
        installed[name_arch] = (version, release)
    return installed


def get_rpm_update(
    line: str,
    rpm2updates: Dict[str, List[Tuple[str, object]]],
    installed_pkgs: Dict[str, Tuple[str, str]],
) -> Optional[Update]:
    """
    Map one 'list updates' output line to an Update.

    Lines that are not package lines, or whose package version is not
    shipped by any known update, yield None.
    """
    parts = line.split()
    if len(parts) != 3:
        return None

    name_arch, evr, repository = parts
    if '.' not in name_arch:
        return None
    name, arch = name_arch.rsplit('.', 1)

    version_release = _split_version(evr)
    if version_release is None:
        return None
    new_version, new_release = version_release

    update_id = None
    for uid, pkg in rpm2updates.get(name_arch, []):
        if pkg.version == new_version and pkg.release == new_release:
            update_id = uid
            break
    if update_id is None:
        logger.debug(f"Ignoring {name_arch} {evr}: not in any known update")
        return None

    old_version, old_release = installed_pkgs.get(name_arch, (None, None))
    return Update(
        name=name,
        arch=arch,
        new_version=new_version,
        new_release=new_release,
        update_id=update_id,
        repository=repository,
        old_version=old_version,
        old_release=old_release,
    )


def updates_of_json(host_json: Dict) -> List[Update]:
    return [Update.of_json(u) for u in host_json['updates']]


def consolidate_host_updates(updates_info, host: str, host_json: Dict) -> Tuple[Dict, Set[str]]:
    """
    Build the pool report entry of one host.

    Args:
        updates_info: Mapping of update id to UpdateInfo
        host: Host reference
        host_json: The host's update report ({'updates': [...]})

    Returns:
        tuple: (host entry, set of update ids pending on the host)
    """
    updates = updates_of_json(host_json)
    uids = {u.update_id for u in updates if u.update_id in updates_info}
    rec = guidance.evaluate(updates_info, updates, GuidanceKind.RECOMMENDED)
    abs_ = guidance.evaluate(updates_info, updates, GuidanceKind.ABSOLUTE)

    entry = {
        'ref': host,
        'recommended-guidance': guidance.to_json(rec),
        'absolute-guidance': guidance.to_json(abs_),
        'RPMS': sorted({u.rpm for u in updates}),
        'updates': sorted(uids),
    }
    return entry, uids
