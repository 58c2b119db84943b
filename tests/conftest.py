import pytest

from vhealth_core.keys import KeyManager, generate_keypair


@pytest.fixture(scope="session")
def keys_dir(tmp_path_factory):
    d = tmp_path_factory.mktemp("keys")
    generate_keypair(d)
    return d


@pytest.fixture(scope="session")
def keypair(keys_dir):
    return KeyManager(keys_dir).load()


@pytest.fixture(scope="session")
def other_keypair(tmp_path_factory):
    return generate_keypair(tmp_path_factory.mktemp("other_keys"))
