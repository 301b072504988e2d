"""Shared fixtures: signing keys, a scripted fake session and the in-process gateway."""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from apns_push.shared.models import ProviderOptions, TokenOptions
from fakes import CountingSigner, FakeClock, FakeSessionFactory
from gateway_stub import GatewayStub


@pytest.fixture
def ec_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def ec_key_pem(ec_private_key) -> str:
    return ec_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def token_options(ec_key_pem) -> TokenOptions:
    return TokenOptions(key=ec_key_pem, key_id="ABC123DEFG", team_id="TEAM123456")


@pytest.fixture
def signer() -> CountingSigner:
    return CountingSigner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def options() -> ProviderOptions:
    return ProviderOptions(token=TokenOptions(key="unused", key_id="KEY", team_id="TEAM"))


@pytest.fixture
async def gateway():
    stub = GatewayStub()
    await stub.start()
    yield stub
    await stub.stop()
