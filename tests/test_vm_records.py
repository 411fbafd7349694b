import libvirt
import pytest

from fleetpatch.models.vm import HALTED, PAUSED, RUNNING, needs_device_model_restart
from fleetpatch.utils import libvirt_connection

HVM_XML = "<domain type='kvm'><devices><emulator>/usr/bin/qemu-kvm</emulator></devices></domain>"
NO_DM_XML = "<domain type='xen'><devices/></domain>"


class FakeDomain:
    def __init__(self, uuid, name, state, active=True, domain_id=5, xml=HVM_XML):
        self._uuid = uuid
        self._name = name
        self._state = state
        self._active = active
        self._id = domain_id
        self._xml = xml

    def isActive(self):
        return 1 if self._active else 0

    def info(self):
        return [self._state, 2097152, 2097152, 2, 0]

    def XMLDesc(self, flags):
        return self._xml

    def ID(self):
        return self._id if self._active else -1

    def name(self):
        return self._name

    def UUIDString(self):
        return self._uuid


def test_running_hvm_guest() -> None:
    record = libvirt_connection.get_vm_record(FakeDomain('u1', 'web', libvirt.VIR_DOMAIN_RUNNING))

    assert record == {
        'uuid': 'u1',
        'name': 'web',
        'power_state': RUNNING,
        'is_control_domain': False,
        'has_device_model': True,
    }
    assert needs_device_model_restart(record)


def test_paused_and_halted_guests() -> None:
    paused = libvirt_connection.get_vm_record(FakeDomain('u2', 'batch', libvirt.VIR_DOMAIN_PAUSED))
    halted = libvirt_connection.get_vm_record(
        FakeDomain('u3', 'old', libvirt.VIR_DOMAIN_SHUTOFF, active=False)
    )

    assert paused['power_state'] == PAUSED
    assert halted['power_state'] == HALTED
    assert not halted['has_device_model']


def test_control_domain_and_guests_without_device_model() -> None:
    dom0 = libvirt_connection.get_vm_record(
        FakeDomain('u0', 'Domain-0', libvirt.VIR_DOMAIN_RUNNING, domain_id=0)
    )
    pv = libvirt_connection.get_vm_record(
        FakeDomain('u4', 'db', libvirt.VIR_DOMAIN_RUNNING, xml=NO_DM_XML)
    )

    assert dom0['is_control_domain']
    assert not needs_device_model_restart(dom0)
    assert not pv['has_device_model']
    assert not needs_device_model_restart(pv)


def test_resident_vms_skips_unreadable_domains() -> None:
    class BrokenDomain(FakeDomain):
        def info(self):
            raise libvirt.libvirtError('domain vanished')

    class FakeConnection:
        def listAllDomains(self, flags):
            return [
                FakeDomain('u1', 'web', libvirt.VIR_DOMAIN_RUNNING),
                BrokenDomain('u9', 'gone', libvirt.VIR_DOMAIN_RUNNING),
            ]

    assert [vm['uuid'] for vm in libvirt_connection.get_resident_vms(FakeConnection())] == ['u1']


class RestartableDomain(FakeDomain):
    def __init__(self, migrate_error=None):
        super().__init__('u1', 'web', libvirt.VIR_DOMAIN_RUNNING)
        self.migrate_error = migrate_error
        self.calls = []

    def migrate(self, conn, flags, dname, uri, bandwidth):
        self.calls.append(('migrate', flags))
        if self.migrate_error is not None:
            raise self.migrate_error

    def managedSave(self, flags):
        self.calls.append(('managedSave', flags))

    def create(self):
        self.calls.append(('create',))


def test_device_model_restart_uses_local_migration_when_allowed() -> None:
    domain = RestartableDomain()

    assert libvirt_connection.restart_device_model(object(), domain) == 'migrate'
    assert domain.calls == [('migrate', libvirt.VIR_MIGRATE_LIVE)]


def test_device_model_restart_falls_back_to_managed_save_on_same_host_refusal() -> None:
    domain = RestartableDomain(libvirt.libvirtError(
        'Requested operation is not valid: Attempt to migrate guest to the same host 4c4c4544-0042'
    ))

    assert libvirt_connection.restart_device_model(object(), domain) == 'managed-save'
    assert domain.calls == [('migrate', libvirt.VIR_MIGRATE_LIVE), ('managedSave', 0), ('create',)]


def test_device_model_restart_propagates_other_migration_errors() -> None:
    domain = RestartableDomain(libvirt.libvirtError('Unable to connect to server'))

    with pytest.raises(libvirt.libvirtError):
        libvirt_connection.restart_device_model(object(), domain)
    assert domain.calls == [('migrate', libvirt.VIR_MIGRATE_LIVE)]
