import aiohttp
import pytest

from fleetpatch.errors import (
    ApplyGuidanceFailed,
    ApplyUpdatesFailed,
    GetHostUpdatesFailed,
    InvalidGuidanceCombination,
    RepositoryOutOfSync,
)
from fleetpatch.models import host as host_db
from fleetpatch.models import repository as repository_db
from fleetpatch.models.vm import HALTED, PAUSED, RUNNING, make_vm_record
from fleetpatch.updater import coordination
from fleetpatch.updater import host_query
from fleetpatch.updater import orchestrator
from fleetpatch.updater.guidance import Guidance
from fleetpatch.updater.updates import Update
from fleetpatch.utils import host_client

PACKAGES = {
    'FP-T': ('fleetpatch-agent', 'noarch', '1.2', '3'),
    'FP-DM': ('qemu-dm', 'x86_64', '4.2.1', '5'),
    'FP-R': ('kernel', 'x86_64', '5.10.0', '9'),
    'FP-E': ('libvirt', 'x86_64', '9.0', '1'),
}

UPDATES = [
    {'id': 'FP-T', 'recommended': ['RestartToolstack'], 'absolute': ['RebootHost'],
     'packages': [PACKAGES['FP-T']]},
    {'id': 'FP-DM', 'recommended': ['RestartDeviceModel'], 'packages': [PACKAGES['FP-DM']]},
    {'id': 'FP-R', 'recommended': ['RebootHost'], 'packages': [PACKAGES['FP-R']]},
    {'id': 'FP-E', 'recommended': ['EvacuateHost', 'RestartDeviceModel'], 'packages': [PACKAGES['FP-E']]},
]

H1 = {'ref': 'OpaqueRef:h1', 'hostname': 'host1', 'address': '10.0.0.1'}
H2 = {'ref': 'OpaqueRef:h2', 'hostname': 'host2', 'address': '10.0.0.2'}


def report(*uids):
    updates = []
    for uid in uids:
        name, arch, version, release = PACKAGES[uid]
        updates.append(Update(name, arch, version, release, uid, 'local').to_json())
    return {'updates': updates}


class FakePool:
    """Stands in for the members: their update reports and agent endpoints."""

    def __init__(self):
        self.reports = {}
        self.vms = []
        self.calls = []
        self.queries = []
        self.fail = {}

    async def query_remote(self, host, installed):
        assert coordination.is_pool_repository_enabled()
        self.queries.append((host['ref'], installed))
        value = self.reports.get(host['ref'], {'updates': []})
        if isinstance(value, Exception):
            raise value
        return value

    def _record(self, name, host, *args):
        self.calls.append((name, host['ref']) + args)
        if name in self.fail:
            raise self.fail[name]

    async def apply_updates(self, host):
        self._record('apply_updates', host)
        return {'status': 'success'}

    async def reboot(self, host):
        self._record('reboot', host)

    async def restart_agent(self, host):
        self._record('restart_agent', host)

    async def get_resident_vms(self, host):
        self._record('get_resident_vms', host)
        return self.vms

    async def migrate_vm_locally(self, host, vm_uuid):
        self._record('migrate_vm_locally', host, vm_uuid)


@pytest.fixture
def repo_ref(pool_repo_dir, make_repo) -> str:
    make_repo(pool_repo_dir, UPDATES, checksum='abc')
    ref = repository_db.introduce('base', '', 'https://updates.example/8', 'https://updates.example/8-src')
    repository_db.set_enabled_repository(ref)
    repository_db.set_hash(ref, 'abc')
    host_db.add_host(H1['hostname'], H1['address'], ref=H1['ref'])
    host_db.add_host(H2['hostname'], H2['address'], ref=H2['ref'])
    return ref


@pytest.fixture
def fake_pool(monkeypatch) -> FakePool:
    pool = FakePool()
    monkeypatch.setattr(host_query, 'query_remote', pool.query_remote)
    for name in ('apply_updates', 'reboot', 'restart_agent', 'get_resident_vms', 'migrate_vm_locally'):
        monkeypatch.setattr(host_client, name, getattr(pool, name))
    return pool


# --- Pool update status ---

async def test_pool_up_to_date_when_no_host_has_updates(repo_ref, fake_pool) -> None:
    with coordination.pool_repository():
        assert await orchestrator.compute_pool_update_status(repo_ref) == 'abc'

    repo = repository_db.get_repository(repo_ref)
    assert repo['up_to_date'] is True
    assert repo['hash'] == 'abc'
    assert sorted(fake_pool.queries) == [(H1['ref'], False), (H2['ref'], False)]


async def test_pool_not_up_to_date_when_a_host_has_updates(repo_ref, fake_pool) -> None:
    fake_pool.reports[H2['ref']] = report('FP-T')

    with coordination.pool_repository():
        await orchestrator.compute_pool_update_status(repo_ref)

    assert repository_db.get_repository(repo_ref)['up_to_date'] is False


async def test_pool_status_unchanged_when_a_host_fails(repo_ref, fake_pool) -> None:
    repository_db.set_up_to_date(repo_ref, True)
    repository_db.set_hash(repo_ref, 'previous')
    fake_pool.reports[H1['ref']] = GetHostUpdatesFailed(H1['ref'])

    with pytest.raises(GetHostUpdatesFailed), coordination.pool_repository():
        await orchestrator.compute_pool_update_status(repo_ref)

    repo = repository_db.get_repository(repo_ref)
    assert repo['up_to_date'] is True
    assert repo['hash'] == 'previous'
    # Sibling hosts still ran
    assert (H2['ref'], False) in fake_pool.queries


async def test_pool_status_rejects_malformed_host_reports(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = {'status': 'success'}

    with pytest.raises(GetHostUpdatesFailed) as exc, coordination.pool_repository():
        await orchestrator.compute_pool_update_status(repo_ref)
    assert exc.value.params == {'host': H1['ref']}


# --- Pool update report ---

async def test_consolidate_pool_updates(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-T')
    fake_pool.reports[H2['ref']] = report('FP-DM', 'FP-T')

    result = await orchestrator.consolidate_pool_updates([H1, H2])

    assert result['hash'] == 'abc'
    assert [u['id'] for u in result['updates']] == ['FP-DM', 'FP-T']
    assert result['hosts'] == [
        {
            'ref': H1['ref'],
            'recommended-guidance': ['RestartToolstack'],
            'absolute-guidance': ['RebootHost'],
            'RPMS': ['fleetpatch-agent-1.2-3.noarch.rpm'],
            'updates': ['FP-T'],
        },
        {
            'ref': H2['ref'],
            'recommended-guidance': ['RestartDeviceModel', 'RestartToolstack'],
            'absolute-guidance': ['RebootHost'],
            'RPMS': ['fleetpatch-agent-1.2-3.noarch.rpm', 'qemu-dm-4.2.1-5.x86_64.rpm'],
            'updates': ['FP-DM', 'FP-T'],
        },
    ]
    assert all(installed for _, installed in fake_pool.queries)
    assert not coordination.is_pool_repository_enabled()


async def test_consolidate_fails_fast_on_stale_hash(repo_ref, fake_pool) -> None:
    repository_db.set_hash(repo_ref, 'stale')

    with pytest.raises(RepositoryOutOfSync):
        await orchestrator.consolidate_pool_updates([H1, H2])
    assert fake_pool.queries == []


async def test_consolidate_reports_host_failures(repo_ref, fake_pool) -> None:
    fake_pool.reports[H2['ref']] = GetHostUpdatesFailed(H2['ref'])

    with pytest.raises(GetHostUpdatesFailed) as exc:
        await orchestrator.consolidate_pool_updates([H1, H2])
    assert exc.value.params == {'host': H2['ref']}


# --- Applying updates ---

async def test_restart_toolstack_only(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-T')

    guidances = await orchestrator.apply_updates(H1, 'abc')

    assert guidances == [Guidance.RESTART_TOOLSTACK]
    assert fake_pool.calls == [
        ('apply_updates', H1['ref']),
        ('restart_agent', H1['ref']),
    ]


async def test_restart_device_models_then_toolstack(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-DM', 'FP-T')
    fake_pool.vms = [
        make_vm_record('dom0', 'Domain-0', RUNNING, is_control_domain=True, has_device_model=True),
        make_vm_record('vm-hvm', 'web', RUNNING, has_device_model=True),
        make_vm_record('vm-pv', 'db', RUNNING, has_device_model=False),
        make_vm_record('vm-off', 'old', HALTED),
    ]

    await orchestrator.apply_updates(H1, 'abc')

    assert fake_pool.calls == [
        ('apply_updates', H1['ref']),
        ('get_resident_vms', H1['ref']),
        ('migrate_vm_locally', H1['ref'], 'vm-hvm'),
        ('restart_agent', H1['ref']),
    ]


async def test_paused_vm_fails_the_device_model_restart(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-DM', 'FP-T')
    fake_pool.vms = [
        make_vm_record('vm-paused', 'batch', PAUSED, has_device_model=True),
        make_vm_record('vm-hvm', 'web', RUNNING, has_device_model=True),
    ]

    with pytest.raises(ApplyGuidanceFailed) as exc:
        await orchestrator.apply_updates(H1, 'abc')

    assert exc.value.params == {'host': H1['ref'], 'vms': ['vm-paused']}
    assert ('migrate_vm_locally', H1['ref'], 'vm-hvm') in fake_pool.calls
    assert ('restart_agent', H1['ref']) not in fake_pool.calls


async def test_refused_device_model_restart_names_the_vm(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-DM')
    fake_pool.vms = [
        make_vm_record('vm-web', 'web', RUNNING, has_device_model=True),
        make_vm_record('vm-paused', 'batch', PAUSED, has_device_model=True),
        make_vm_record('vm-db', 'db', RUNNING, has_device_model=True),
    ]
    fake_pool.fail['migrate_vm_locally'] = aiohttp.ClientError('500 Internal Server Error')

    with pytest.raises(ApplyGuidanceFailed) as exc:
        await orchestrator.apply_updates(H1, 'abc')

    assert exc.value.params == {'host': H1['ref'], 'vms': ['vm-web', 'vm-paused', 'vm-db']}
    assert ('migrate_vm_locally', H1['ref'], 'vm-db') in fake_pool.calls


async def test_reboot_subsumes_other_guidances(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-R', 'FP-T', 'FP-DM')

    guidances = await orchestrator.apply_updates(H1, 'abc')

    assert guidances == [Guidance.REBOOT_HOST]
    assert fake_pool.calls == [
        ('apply_updates', H1['ref']),
        ('reboot', H1['ref']),
    ]


async def test_evacuated_host_skips_device_model_restart_in_a_pool(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-E')
    fake_pool.vms = [make_vm_record('vm-hvm', 'web', RUNNING, has_device_model=True)]

    await orchestrator.apply_updates(H1, 'abc')

    assert fake_pool.calls == [('apply_updates', H1['ref'])]


async def test_sole_host_restarts_device_models_after_evacuation(repo_ref, fake_pool, monkeypatch) -> None:
    monkeypatch.setattr(host_db, 'get_all_hosts', lambda: [H1])
    fake_pool.reports[H1['ref']] = report('FP-E')
    fake_pool.vms = [make_vm_record('vm-hvm', 'web', RUNNING, has_device_model=True)]

    await orchestrator.apply_updates(H1, 'abc')

    assert fake_pool.calls == [
        ('apply_updates', H1['ref']),
        ('get_resident_vms', H1['ref']),
        ('migrate_vm_locally', H1['ref'], 'vm-hvm'),
    ]


async def test_up_to_date_host_is_left_alone(repo_ref, fake_pool) -> None:
    assert await orchestrator.apply_updates(H1, 'abc') == []
    assert fake_pool.calls == []


async def test_stale_hash_prevents_apply(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-T')

    with pytest.raises(RepositoryOutOfSync):
        await orchestrator.apply_updates(H1, 'stale')
    assert fake_pool.calls == []


async def test_apply_failure_is_reported_for_the_host(repo_ref, fake_pool) -> None:
    fake_pool.reports[H1['ref']] = report('FP-T')
    fake_pool.fail['apply_updates'] = aiohttp.ClientError('connection reset')

    with pytest.raises(ApplyUpdatesFailed) as exc:
        await orchestrator.apply_updates(H1, 'abc')
    assert exc.value.params == {'host': H1['ref']}
    assert ('restart_agent', H1['ref']) not in fake_pool.calls


async def test_guidance_action_failure(repo_ref, fake_pool) -> None:
    fake_pool.fail['restart_agent'] = aiohttp.ClientError('connection reset')

    with pytest.raises(ApplyGuidanceFailed) as exc:
        await orchestrator.execute_guidance(H1, [Guidance.RESTART_TOOLSTACK])
    assert exc.value.params == {'host': H1['ref'], 'vms': []}


async def test_execute_guidance_rejects_illegal_combinations(repo_ref, fake_pool) -> None:
    with pytest.raises(InvalidGuidanceCombination):
        await orchestrator.execute_guidance(H1, [Guidance.REBOOT_HOST, Guidance.RESTART_TOOLSTACK])
    assert fake_pool.calls == []
