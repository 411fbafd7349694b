"""
Repository metadata parsing.

This module reads the metadata index (repodata/repomd.xml) of a mirrored
repository and the compressed update-info document it points at, and checks
that the checksum recorded in the pool database still matches the mirror.
"""

import os
import gzip
import shutil
import logging
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Optional
from xml.etree import ElementTree as ET

from ..config import REPODATA_DIR, REPOMD_XML, UPDATEINFO_MDTYPE
from ..config_loader import get_pool_repo_dir
from ..errors import InvalidUpdateInfoDocument, RepositoryOutOfSync
from .guidance import Guidance, GuidanceKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateInfoMetaData:
    checksum: str
    location: str


@dataclass(frozen=True)
class UpdatePackage:
    name: str
    arch: str
    version: str
    release: str
    epoch: Optional[str] = None

    @property
    def name_arch(self) -> str:
        return f"{self.name}.{self.arch}"


@dataclass(frozen=True)
class UpdateInfo:
    """One entry of the update-info document."""

    id: str
    summary: str = ''
    description: str = ''
    category: str = ''
    severity: str = ''
    url: str = ''
    rec_guidances: FrozenSet[Guidance] = frozenset()
    abs_guidances: FrozenSet[Guidance] = frozenset()
    packages: List[UpdatePackage] = field(default_factory=list)

    def guidances(self, kind: GuidanceKind) -> FrozenSet[Guidance]:
        if kind is GuidanceKind.RECOMMENDED:
            return self.rec_guidances
        return self.abs_guidances

    def to_json(self) -> Dict:
        return {
            'id': self.id,
            'summary': self.summary,
            'description': self.description,
            'type': self.category,
            'severity': self.severity,
            'url': self.url,
            'recommended-guidance': sorted(g.value for g in self.rec_guidances),
            'absolute-guidance': sorted(g.value for g in self.abs_guidances),
        }


def _local_name(tag: str) -> str:
    # Strip the '{namespace}' prefix ElementTree puts on qualified tags
    return tag.rsplit('}', 1)[-1]


def _children(elem, name: str) -> List:
    return [child for child in elem if _local_name(child.tag) == name]


def _child_text(elem, name: str) -> str:
    for child in _children(elem, name):
        return (child.text or '').strip()
    return ''


def parse_metadata_index(path: str) -> UpdateInfoMetaData:
    """
    Parse a repomd.xml metadata index.

    Args:
        path: Path of the repomd.xml file

    Returns:
        UpdateInfoMetaData: checksum and relative location of the
        update-info document

    Raises:
        InvalidUpdateInfoDocument: if the index is missing, malformed or has
        no update-info entry
    """
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        logger.error(f"Failed to parse repository metadata {path}: {e}")
        raise InvalidUpdateInfoDocument(f"Invalid repository metadata: {path}") from e

    for data in _children(root, 'data'):
        if data.get('type') != UPDATEINFO_MDTYPE:
            continue
        checksum = _child_text(data, 'checksum')
        locations = _children(data, 'location')
        location = locations[0].get('href') if locations else None
        if checksum and location:
            return UpdateInfoMetaData(checksum=checksum, location=location)

    logger.error(f"No {UPDATEINFO_MDTYPE} entry found in {path}")
    raise InvalidUpdateInfoDocument(f"Invalid repository metadata: {path}")


def _parse_guidances(update_elem, kind: GuidanceKind) -> FrozenSet[Guidance]:
    result = set()
    for guidances in _children(update_elem, 'guidances'):
        for group in _children(guidances, kind.value):
            for g in _children(group, 'guidance'):
                result.add(Guidance.of_string(g.text or ''))
    return frozenset(result)


def _parse_packages(update_elem) -> List[UpdatePackage]:
    packages = []
    for pkglist in _children(update_elem, 'pkglist'):
        for collection in _children(pkglist, 'collection'):
            for pkg in _children(collection, 'package'):
                packages.append(UpdatePackage(
                    name=pkg.get('name'),
                    arch=pkg.get('arch'),
                    version=pkg.get('version'),
                    release=pkg.get('release'),
                    epoch=pkg.get('epoch'),
                ))
    return packages


def _parse_update(elem) -> UpdateInfo:
    update_id = _child_text(elem, 'id')
    if not update_id:
        raise ValueError("update entry without id")
    references = [
        ref.get('href')
        for refs in _children(elem, 'references')
        for ref in _children(refs, 'reference')
        if ref.get('href')
    ]
    return UpdateInfo(
        id=update_id,
        summary=_child_text(elem, 'summary') or _child_text(elem, 'title'),
        description=_child_text(elem, 'description'),
        category=elem.get('type', ''),
        severity=_child_text(elem, 'severity'),
        url=references[0] if references else '',
        rec_guidances=_parse_guidances(elem, GuidanceKind.RECOMMENDED),
        abs_guidances=_parse_guidances(elem, GuidanceKind.ABSOLUTE),
        packages=_parse_packages(elem),
    )


def parse_updateinfo(path: str) -> Dict[str, UpdateInfo]:
    """
    Decompress and parse an update-info document.

    Args:
        path: Path of the gzip-compressed updateinfo.xml

    Returns:
        dict: Mapping of update id to UpdateInfo

    Raises:
        InvalidUpdateInfoDocument: if the file is missing or malformed
    """
    if not os.path.exists(path):
        logger.error(f"File {path} doesn't exist")
        raise InvalidUpdateInfoDocument(f"Update-info document not found: {path}")

    try:
        with gzip.open(path, 'rb') as f:
            root = ET.parse(f).getroot()
        updates = {}
        for elem in _children(root, 'update'):
            info = _parse_update(elem)
            updates[info.id] = info
    except (OSError, EOFError, ET.ParseError, ValueError) as e:
        logger.error(f"Failed to parse update-info document {path}: {e}")
        raise InvalidUpdateInfoDocument(f"Invalid update-info document: {path}") from e

    logger.debug(f"Parsed {len(updates)} updates from {path}")
    return updates


def validate_checksum(expected: str, actual: str) -> None:
    """
    Check the database's idea of the repository against the mirror.

    Raises:
        RepositoryOutOfSync: if the checksums differ; the pool must sync again
    """
    if expected != actual:
        logger.error(
            f"Unexpected mismatch between pool database ({expected}) and "
            f"repository metadata ({actual}). Need to sync updates again."
        )
        raise RepositoryOutOfSync(expected, actual)


@contextmanager
def updateinfo_xml(gz_path: str) -> Iterator[str]:
    """
    Decompress an update-info document into a temporary file.

    Yields:
        str: Path of the decompressed updateinfo.xml, removed on exit
    """
    tmp_dir = tempfile.mkdtemp(prefix='updateinfo-')
    xml_path = os.path.join(tmp_dir, 'updateinfo.xml')
    try:
        try:
            with gzip.open(gz_path, 'rb') as src, open(xml_path, 'wb') as dst:
                shutil.copyfileobj(src, dst)
        except (OSError, EOFError) as e:
            logger.error(f"Failed to decompress {gz_path}: {e}")
            raise InvalidUpdateInfoDocument(f"Invalid update-info document: {gz_path}") from e
        yield xml_path
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def get_repomd_path(repo_dir: Optional[str] = None) -> str:
    return os.path.join(repo_dir or get_pool_repo_dir(), REPODATA_DIR, REPOMD_XML)


def parse_pool_updateinfo(expected_hash: str) -> Dict[str, UpdateInfo]:
    """
    Parse the update-info document of the pool mirror.

    The checksum in the mirror's metadata index must match the hash stored
    for the enabled repository; otherwise the mirror was rebuilt behind the
    database's back and a new sync is required.
    """
    repo_dir = get_pool_repo_dir()
    md = parse_metadata_index(get_repomd_path(repo_dir))
    validate_checksum(expected_hash, md.checksum)
    return parse_updateinfo(os.path.join(repo_dir, md.location))
