"""Fixtures for signed-in users on the reference backend."""

from dataclasses import dataclass

import pytest_asyncio

from dmsync.backend.local import LocalBackend
from dmsync.schemas.auth import Identity
from dmsync.schemas.profile import Profile

DEFAULT_PASSWORD = "correct horse battery"


@dataclass
class SignedUpUser:
    backend: LocalBackend
    identity: Identity
    profile: Profile
    email: str
    password: str


async def sign_up_user(
    backend: LocalBackend, email: str, username: str, password: str = DEFAULT_PASSWORD
) -> SignedUpUser:
    identity = await backend.sign_up(email, password, {"username": username})
    profile = await backend.fetch_profile(identity.id)
    return SignedUpUser(
        backend=backend,
        identity=identity,
        profile=profile,
        email=email,
        password=password,
    )


@pytest_asyncio.fixture(scope="function")
async def alice(make_backend, faker):
    return await sign_up_user(make_backend(), faker.unique.email(), "alice")


@pytest_asyncio.fixture(scope="function")
async def bob(make_backend, faker):
    return await sign_up_user(make_backend(), faker.unique.email(), "bob")


@pytest_asyncio.fixture(scope="function")
async def carol(make_backend, faker):
    return await sign_up_user(make_backend(), faker.unique.email(), "carol")
