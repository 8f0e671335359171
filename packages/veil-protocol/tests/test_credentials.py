"""Tests for bearer credential issuance and verification."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from veil_core.exceptions import CredentialExpiredError, InvalidCredentialError
from veil_core.identity import hash_address
from veil_core.models import Role
from veil_protocol import CredentialIssuer

SECRET = "test-secret-key-that-is-long-enough-for-hs256"
ADDRESS = "aleo1" + "q" * 58


class TestCredentialIssuer:
    def test_round_trip(self):
        issuer = CredentialIssuer(SECRET, ttl_seconds=3600)
        issued = issuer.issue_credential(ADDRESS, "merchant")

        credential = issuer.verify(issued.token)
        assert credential.address == ADDRESS
        assert credential.role == Role.MERCHANT
        assert credential.expires_at - credential.issued_at == timedelta(hours=1)
        assert credential == issued.credential

    def test_address_hash(self):
        issuer = CredentialIssuer(SECRET)
        credential = issuer.verify(issuer.issue_credential(ADDRESS, Role.BUYER).token)
        assert credential.address_hash == hash_address(ADDRESS)

    def test_unknown_role_rejected_at_issue(self):
        issuer = CredentialIssuer(SECRET)
        with pytest.raises(ValueError):
            issuer.issue_credential(ADDRESS, "admin")

    def test_expired_credential(self):
        past = datetime.now(timezone.utc) - timedelta(days=2)
        issuer = CredentialIssuer(SECRET, ttl_seconds=60, clock=lambda: past)
        token = issuer.issue_credential(ADDRESS, Role.BUYER).token

        with pytest.raises(CredentialExpiredError):
            CredentialIssuer(SECRET).verify(token)

    def test_tampered_credential(self):
        issuer = CredentialIssuer(SECRET)
        token = issuer.issue_credential(ADDRESS, Role.BUYER).token
        header, payload, signature = token.split(".")
        forged = ".".join([header, payload, signature[::-1]])

        with pytest.raises(InvalidCredentialError):
            issuer.verify(forged)

    def test_wrong_secret(self):
        token = CredentialIssuer("another-secret-key-of-sufficient-length").issue_credential(
            ADDRESS, Role.BUYER
        ).token
        with pytest.raises(InvalidCredentialError):
            CredentialIssuer(SECRET).verify(token)

    def test_garbage_token(self):
        with pytest.raises(InvalidCredentialError):
            CredentialIssuer(SECRET).verify("not.a.jwt")

    def test_missing_role_claim(self):
        now = int(datetime.now(timezone.utc).timestamp())
        token = jwt.encode(
            {"address": ADDRESS, "iat": now, "exp": now + 60}, SECRET, algorithm="HS256"
        )
        with pytest.raises(InvalidCredentialError):
            CredentialIssuer(SECRET).verify(token)

    def test_invalid_address_claim(self):
        now = int(datetime.now(timezone.utc).timestamp())
        token = jwt.encode(
            {"address": "0xabc", "role": "buyer", "iat": now, "exp": now + 60},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidCredentialError):
            CredentialIssuer(SECRET).verify(token)

    def test_secret_required(self):
        with pytest.raises(ValueError):
            CredentialIssuer("")
