import os
import stat

from fleetpatch import config_loader
from fleetpatch import main
from fleetpatch.auth import api_keys


def test_created_key_verifies_and_is_stored_hashed() -> None:
    key = api_keys.create_api_key('ops', description='patch pipeline')

    assert key['key'].startswith(api_keys.API_KEY_PREFIX)
    assert api_keys.verify_api_key(key['key']) == {'key_id': key['id'], 'key_name': 'ops'}

    path = config_loader.get_api_keys_path()
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    with open(path) as f:
        assert key['key'] not in f.read()


def test_unknown_or_malformed_keys_are_refused() -> None:
    api_keys.create_api_key('ops')

    assert api_keys.verify_api_key(None) is None
    assert api_keys.verify_api_key('not-a-pool-key') is None
    assert api_keys.verify_api_key(api_keys.generate_api_key()) is None


def test_revoked_key_is_refused() -> None:
    key = api_keys.create_api_key('ops')

    assert api_keys.revoke_api_key(key['id'])
    assert api_keys.verify_api_key(key['key']) is None
    assert not api_keys.revoke_api_key('missing')


def test_list_hides_hashes_and_tracks_use() -> None:
    key = api_keys.create_api_key('ops')
    api_keys.verify_api_key(key['key'])

    [listed] = api_keys.list_api_keys()
    assert listed['id'] == key['id']
    assert listed['last_used_at'] is not None
    assert 'hashed_key' not in listed


def test_create_api_key_command_prints_the_key(capsys) -> None:
    assert main.main(['create-api-key', 'ops']) == 0

    key_id, key = capsys.readouterr().out.split()
    assert api_keys.verify_api_key(key)['key_id'] == key_id

    assert main.main(['revoke-api-key', key_id]) == 0
    assert api_keys.verify_api_key(key) is None
    assert main.main(['revoke-api-key', 'missing']) == 1
