"""Tests for address validation and identity hashing."""
import pytest

from veil_core.exceptions import VeilValidationError
from veil_core.identity import (
    hash_address,
    is_identity_hash,
    is_valid_address,
    require_address,
)

BUYER_ADDRESS = "aleo1" + "q" * 58
MERCHANT_ADDRESS = "aleo1" + "p" * 58


class TestAddressValidation:
    def test_accepts_well_formed_address(self):
        assert is_valid_address(BUYER_ADDRESS)

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "aleo1abc",
            "aleo2" + "q" * 58,
            "aleo1" + "b" * 58,  # 'b' is outside the bech32 charset
            "aleo1" + "Q" * 58,
            "aleo1" + "q" * 59,
            None,
        ],
    )
    def test_rejects_malformed_address(self, address):
        assert not is_valid_address(address)

    def test_require_address_raises_validation_error(self):
        with pytest.raises(VeilValidationError) as exc_info:
            require_address("0xdeadbeef")
        assert exc_info.value.details["field"] == "address"
        assert exc_info.value.http_status == 400


class TestIdentityHash:
    def test_hash_is_deterministic(self):
        assert hash_address(BUYER_ADDRESS) == hash_address(BUYER_ADDRESS)

    def test_distinct_addresses_hash_differently(self):
        assert hash_address(BUYER_ADDRESS) != hash_address(MERCHANT_ADDRESS)

    def test_hash_does_not_contain_address(self):
        digest = hash_address(BUYER_ADDRESS)
        assert BUYER_ADDRESS not in digest
        assert is_identity_hash(digest)

    def test_identity_hash_shape(self):
        assert not is_identity_hash("abc")
        assert not is_identity_hash("G" * 64)
