"""
Libvirt connection management utilities.

This module provides functions for establishing and managing connections
to libvirt, retrieving domain objects and restarting device models on
this host.
"""

import logging
from contextlib import contextmanager
from xml.etree import ElementTree as ET

import libvirt

from ..config_loader import get_pool_config
from ..models.vm import CONTROL_DOMAIN_NAME, HALTED, PAUSED, RUNNING, SUSPENDED, make_vm_record

logger = logging.getLogger(__name__)


def get_connection():
    """Connects to libvirt or returns None.

    Returns:
        libvirt connection object or None on failure
    """
    uri = get_pool_config()['libvirt_uri']
    try:
        conn = libvirt.open(uri)
        if conn is None:
            logger.error(f"Failed to open connection to {uri}")
            return None
        return conn
    except libvirt.libvirtError as e:
        logger.error(f"LIBVIRT ERROR: {e}")
        return None


@contextmanager
def libvirt_connection():
    """Open a libvirt connection for the block, raising if unavailable."""
    conn = get_connection()
    if conn is None:
        raise ConnectionError('Could not connect to libvirt.')
    try:
        yield conn
    finally:
        conn.close()


def get_domain_by_uuid(conn, uuid):
    """Safely look up a domain by UUID.

    Args:
        conn: libvirt connection object
        uuid: domain UUID string

    Returns:
        domain object or None if not found
    """
    try:
        return conn.lookupByUUIDString(uuid)
    except libvirt.libvirtError:
        return None


_POWER_STATES = {
    libvirt.VIR_DOMAIN_RUNNING: RUNNING,
    libvirt.VIR_DOMAIN_BLOCKED: RUNNING,
    libvirt.VIR_DOMAIN_PAUSED: PAUSED,
    libvirt.VIR_DOMAIN_PMSUSPENDED: SUSPENDED,
}


def get_vm_record(domain):
    """Extracts the update-relevant record of a virDomain object.

    Args:
        domain: libvirt domain object

    Returns:
        dict: VM record or None on error
    """
    try:
        active = bool(domain.isActive())
        state = domain.info()[0]
        root = ET.fromstring(domain.XMLDesc(0))
        is_control_domain = (active and domain.ID() == 0) or domain.name() == CONTROL_DOMAIN_NAME

        return make_vm_record(
            uuid=domain.UUIDString(),
            name=domain.name(),
            power_state=_POWER_STATES.get(state, HALTED) if active else HALTED,
            is_control_domain=is_control_domain,
            has_device_model=active and root.find('./devices/emulator') is not None,
        )
    except libvirt.libvirtError as e:
        logger.error(f"Error getting record for domain {domain.name()}: {e}")
        return None


def get_resident_vms(conn):
    """Returns the records of all domains on the connection's host."""
    domains = conn.listAllDomains(
        libvirt.VIR_CONNECT_LIST_DOMAINS_ACTIVE | libvirt.VIR_CONNECT_LIST_DOMAINS_INACTIVE
    )
    records = []
    for domain in domains:
        record = get_vm_record(domain)
        if record:
            records.append(record)
    return records


def _is_same_host_refusal(error):
    return 'same host' in str(error)


def restart_device_model(conn, domain):
    """Restarts the device model of a running domain on this host.

    A live migration to the same host is tried first. Drivers that refuse
    to migrate a guest to its own host (QEMU/KVM does) get a managed save
    followed by a start instead: guest memory survives, but the guest is
    stopped while its state is written out and read back.

    Returns:
        str: 'migrate' or 'managed-save', the mechanism that was used

    Raises:
        libvirt.libvirtError: if neither mechanism succeeds
    """
    logger.info(f"Live migrating {domain.name()} locally to restart its device model")
    try:
        domain.migrate(conn, libvirt.VIR_MIGRATE_LIVE, None, None, 0)
        return 'migrate'
    except libvirt.libvirtError as e:
        if not _is_same_host_refusal(e):
            raise
        logger.warning(f"Local migration of {domain.name()} refused ({e}), restarting it from a managed save")

    domain.managedSave(0)
    domain.create()
    return 'managed-save'
