from fleetpatch.updater import updates as updates_mod
from fleetpatch.updater.guidance import Guidance
from fleetpatch.updater.metadata import UpdateInfo, UpdatePackage
from fleetpatch.updater.updates import Update

UPDATES_INFO = {
    'FP-1': UpdateInfo(
        id='FP-1',
        rec_guidances=frozenset([Guidance.RESTART_TOOLSTACK]),
        abs_guidances=frozenset([Guidance.REBOOT_HOST]),
        packages=[UpdatePackage('fleetpatch-agent', 'noarch', '1.2', '3')],
    ),
    'FP-2': UpdateInfo(
        id='FP-2',
        rec_guidances=frozenset([Guidance.RESTART_DEVICE_MODEL]),
        packages=[UpdatePackage('qemu-dm', 'x86_64', '4.2.1', '5')],
    ),
}


def test_rpm2updates_index() -> None:
    rpm2updates = updates_mod.get_updates_from_updateinfo(UPDATES_INFO)

    assert set(rpm2updates) == {'fleetpatch-agent.noarch', 'qemu-dm.x86_64'}
    uid, pkg = rpm2updates['qemu-dm.x86_64'][0]
    assert uid == 'FP-2'
    assert pkg.version == '4.2.1'


def test_get_rpm_update_matches_known_update() -> None:
    rpm2updates = updates_mod.get_updates_from_updateinfo(UPDATES_INFO)
    installed = updates_mod.parse_installed_pkgs('qemu-dm.x86_64 4.2.0 1\nbash.x86_64 5.1 2\n')

    update = updates_mod.get_rpm_update('qemu-dm.x86_64    4.2.1-5    local', rpm2updates, installed)

    assert update == Update(
        name='qemu-dm',
        arch='x86_64',
        new_version='4.2.1',
        new_release='5',
        update_id='FP-2',
        repository='local',
        old_version='4.2.0',
        old_release='1',
    )
    assert update.rpm == 'qemu-dm-4.2.1-5.x86_64.rpm'


def test_get_rpm_update_strips_epoch() -> None:
    rpm2updates = updates_mod.get_updates_from_updateinfo(UPDATES_INFO)

    update = updates_mod.get_rpm_update('fleetpatch-agent.noarch 2:1.2-3 local', rpm2updates, {})

    assert update.update_id == 'FP-1'
    assert update.old_version is None


def test_get_rpm_update_drops_unmatched_lines() -> None:
    rpm2updates = updates_mod.get_updates_from_updateinfo(UPDATES_INFO)

    assert updates_mod.get_rpm_update('Updated Packages', rpm2updates, {}) is None
    assert updates_mod.get_rpm_update('bash.x86_64 5.2-1 local', rpm2updates, {}) is None
    # Version not shipped by the known update
    assert updates_mod.get_rpm_update('qemu-dm.x86_64 4.3.0-1 local', rpm2updates, {}) is None
    assert updates_mod.get_rpm_update('qemu-dm.x86_64 4.2.1 local', rpm2updates, {}) is None


def test_update_json_uses_camel_case() -> None:
    update = Update.of_json({
        'name': 'qemu-dm',
        'arch': 'x86_64',
        'newVersion': '4.2.1',
        'newRelease': '5',
        'updateId': 'FP-2',
    })

    data = update.to_json()
    assert data['newVersion'] == '4.2.1'
    assert data['oldVersion'] is None
    assert data['updateId'] == 'FP-2'


def test_consolidate_host_updates() -> None:
    host_json = {'updates': [
        Update('qemu-dm', 'x86_64', '4.2.1', '5', 'FP-2', 'local', '4.2.0', '1').to_json(),
        Update('fleetpatch-agent', 'noarch', '1.2', '3', 'FP-1', 'local').to_json(),
    ]}

    entry, uids = updates_mod.consolidate_host_updates(UPDATES_INFO, 'OpaqueRef:h1', host_json)

    assert uids == {'FP-1', 'FP-2'}
    assert entry == {
        'ref': 'OpaqueRef:h1',
        'recommended-guidance': ['RestartDeviceModel', 'RestartToolstack'],
        'absolute-guidance': ['RebootHost'],
        'RPMS': ['fleetpatch-agent-1.2-3.noarch.rpm', 'qemu-dm-4.2.1-5.x86_64.rpm'],
        'updates': ['FP-1', 'FP-2'],
    }
