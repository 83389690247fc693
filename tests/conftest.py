"""Shared fixtures: RSA key material and deployment settings."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from telebridge.config.settings import settings


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture(scope="session")
def public_pem(rsa_key) -> str:
    return rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


@pytest.fixture
def hosted_env(monkeypatch, private_pem):
    """Point the global settings at a hosted deployment with a signing key."""
    monkeypatch.setattr(settings, "JITSI_DOMAIN", "8x8.vc")
    monkeypatch.setattr(settings, "JITSI_APP_ID", "vpaas-magic-cookie-abc123")
    monkeypatch.setattr(settings, "JITSI_PRIVATE_KEY", private_pem)
    monkeypatch.setattr(settings, "JITSI_KEY_ID", "")
    monkeypatch.setattr(settings, "CREDENTIAL_ENDPOINT", "")
    return settings


@pytest.fixture
def free_env(monkeypatch):
    """Point the global settings at the public service."""
    monkeypatch.setattr(settings, "JITSI_DOMAIN", "meet.jit.si")
    monkeypatch.setattr(settings, "JITSI_APP_ID", "")
    monkeypatch.setattr(settings, "JITSI_PRIVATE_KEY", "")
    monkeypatch.setattr(settings, "JITSI_KEY_ID", "")
    monkeypatch.setattr(settings, "CREDENTIAL_ENDPOINT", "")
    return settings
