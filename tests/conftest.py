from collections.abc import Iterator

import pytest
from jwe_cookie_map import EncryptionConfiguration, KeyPair, create_key_pair, default_configuration


@pytest.fixture(scope="session")
def key_pair() -> KeyPair:
    return create_key_pair()


@pytest.fixture(scope="session")
def other_key_pair() -> KeyPair:
    return create_key_pair()


@pytest.fixture
def configuration(key_pair: KeyPair) -> EncryptionConfiguration:
    return EncryptionConfiguration.from_key_pair(key_pair)


@pytest.fixture
def fresh_default_configuration() -> Iterator[EncryptionConfiguration]:
    default_configuration.cache_clear()
    yield default_configuration()
    default_configuration.cache_clear()
