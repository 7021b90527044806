from __future__ import annotations

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from fakes import generate_rsa_key


@pytest.fixture(scope="session")
def support_key() -> rsa.RSAPrivateKey:
    """Key pair standing in for the support-token signer."""
    return generate_rsa_key()


@pytest.fixture(scope="session")
def bearer_key() -> rsa.RSAPrivateKey:
    """Key pair standing in for the ADB2C tenant."""
    return generate_rsa_key()


@pytest.fixture(scope="session")
def foreign_key() -> rsa.RSAPrivateKey:
    """A key nobody trusts."""
    return generate_rsa_key()
