import gzip
from pathlib import Path
from typing import Dict, Iterable, List

import bcrypt
import pytest

from fleetpatch import config_loader
from fleetpatch.auth import sessions
from fleetpatch.updater import coordination

LOCAL_HOST_REF = 'OpaqueRef:host-1'


@pytest.fixture(autouse=True)
def fleetpatch_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Dict:
    """Point every configuration and data file at a temporary directory."""
    monkeypatch.setattr(config_loader, 'REPOSITORY_CONFIG_PATH', str(tmp_path / 'config' / 'repository.json'))
    monkeypatch.setattr(config_loader, 'POOL_CONFIG_PATH', str(tmp_path / 'config' / 'pool.json'))
    monkeypatch.setattr(config_loader, 'POOL_DATABASE_PATH', str(tmp_path / 'data' / 'pool.json'))
    monkeypatch.setattr(config_loader, 'API_KEYS_PATH', str(tmp_path / 'data' / 'api_keys.json'))
    monkeypatch.setattr(sessions, '_revoked', {})
    # Cheap hashes keep API key checks fast
    gensalt = bcrypt.gensalt
    monkeypatch.setattr(bcrypt, 'gensalt', lambda: gensalt(rounds=4))
    monkeypatch.setattr(coordination, '_pool_repository_permits', 0)
    monkeypatch.setattr(coordination, '_local_repository_users', 0)
    config_loader.clear_cache()

    config_loader.save_repository_config({
        'local_pool_repo_dir': str(tmp_path / 'mirror'),
        'yum_repos_config_dir': str(tmp_path / 'yum.repos.d'),
        'yum_cache_dir': str(tmp_path / 'cache'),
    })
    config_loader.save_pool_config({
        'local_host_ref': LOCAL_HOST_REF,
        'coordinator_address': 'coordinator.example',
        'session_secret': 'test-session-secret',
    })

    yield {'root': tmp_path}

    config_loader.clear_cache()


def build_updateinfo(updates: Iterable[Dict]) -> bytes:
    """Render update-info XML.

    Each update is a dict with 'id', 'packages' (name, arch, version, release
    tuples) and optional 'recommended' / 'absolute' guidance names.
    """
    parts = ['<?xml version="1.0" encoding="UTF-8"?>', '<updates>']
    for update in updates:
        parts.append(f'<update type="{update.get("type", "security")}">')
        parts.append(f'<id>{update["id"]}</id>')
        parts.append(f'<summary>{update.get("summary", "Summary of " + update["id"])}</summary>')
        parts.append(f'<description>{update.get("description", "")}</description>')
        parts.append(f'<severity>{update.get("severity", "High")}</severity>')
        parts.append('<references>'
                     f'<reference href="https://advisories.example/{update["id"]}"/>'
                     '</references>')
        parts.append('<guidances>')
        for kind in ('recommended', 'absolute'):
            parts.append(f'<{kind}>')
            for g in update.get(kind, []):
                parts.append(f'<guidance>{g}</guidance>')
            parts.append(f'</{kind}>')
        parts.append('</guidances>')
        parts.append('<pkglist><collection>')
        for name, arch, version, release in update.get('packages', []):
            parts.append(f'<package name="{name}" arch="{arch}" version="{version}" '
                         f'release="{release}" epoch="0"/>')
        parts.append('</collection></pkglist>')
        parts.append('</update>')
    parts.append('</updates>')
    return '\n'.join(parts).encode()


def build_repomd(checksum: str, location: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<repomd xmlns="http://linux.duke.edu/metadata/repo" '
        'xmlns:rpm="http://linux.duke.edu/metadata/rpm">\n'
        '  <revision>1700000000</revision>\n'
        '  <data type="primary">\n'
        '    <checksum type="sha256">primarychecksum</checksum>\n'
        '    <location href="repodata/primarychecksum-primary.xml.gz"/>\n'
        '  </data>\n'
        '  <data type="updateinfo">\n'
        f'    <checksum type="sha256">{checksum}</checksum>\n'
        f'    <location href="{location}"/>\n'
        '  </data>\n'
        '</repomd>\n'
    )


@pytest.fixture
def make_repo():
    """Write repodata/repomd.xml and its compressed update-info under a directory."""

    def _make(repo_dir: Path, updates: List[Dict], checksum: str = 'checksum-1') -> Path:
        repodata = Path(repo_dir) / 'repodata'
        repodata.mkdir(parents=True, exist_ok=True)
        location = f'repodata/{checksum}-updateinfo.xml.gz'
        (repodata / 'repomd.xml').write_text(build_repomd(checksum, location))
        with gzip.open(Path(repo_dir) / location, 'wb') as f:
            f.write(build_updateinfo(updates))
        return Path(repo_dir)

    return _make


@pytest.fixture
def make_cache():
    """Write metadata the way the package manager caches it: flat in one directory."""

    def _make(cache_dir: Path, updates: List[Dict], checksum: str = 'checksum-1') -> Path:
        cache_dir = Path(cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
        name = f'{checksum}-updateinfo.xml.gz'
        (cache_dir / 'repomd.xml').write_text(build_repomd(checksum, f'repodata/{name}'))
        with gzip.open(cache_dir / name, 'wb') as f:
            f.write(build_updateinfo(updates))
        return cache_dir

    return _make


@pytest.fixture
def pool_repo_dir() -> Path:
    return Path(config_loader.get_pool_repo_dir())
