"""Tests for the structural signature verifier."""
import pytest

from veil_protocol import SignatureVerifier, StructuralSignatureVerifier

ADDRESS = "aleo1" + "q" * 58
MESSAGE = "Sign this nonce to authenticate: abc"
SIGNATURE = "sign1" + "a" * 70


class TestStructuralSignatureVerifier:
    def test_satisfies_protocol(self):
        assert isinstance(StructuralSignatureVerifier(), SignatureVerifier)

    def test_accepts_well_formed_signature(self):
        assert StructuralSignatureVerifier().verify(ADDRESS, MESSAGE, SIGNATURE)

    @pytest.mark.parametrize(
        "address,message,signature",
        [
            (ADDRESS, MESSAGE, ""),
            (ADDRESS, "", SIGNATURE),
            ("aleo1short", MESSAGE, SIGNATURE),
            (ADDRESS, MESSAGE, "sig1" + "a" * 70),
            (ADDRESS, MESSAGE, "sign1abc"),
            (ADDRESS, MESSAGE, "sign1" + "a" * 60 + "!!"),
        ],
    )
    def test_rejects_malformed_input(self, address, message, signature):
        assert not StructuralSignatureVerifier().verify(address, message, signature)
