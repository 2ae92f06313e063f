"""Tests for Argon2id password hashing."""

import warnings

import pytest

from finvault.core.auth.argon2_auth import Argon2Hasher
from finvault.core.config import SecurityWarning


class TestArgon2Hasher:

    def test_hash_is_argon2id_encoded(self, hasher):
        encoded = hasher.hash("S3cure!pass")

        assert encoded.startswith("$argon2id$")
        assert "S3cure!pass" not in encoded

    def test_same_password_hashes_differently(self, hasher):
        assert hasher.hash("S3cure!pass") != hasher.hash("S3cure!pass")

    def test_verify_accepts_correct_password(self, hasher):
        encoded = hasher.hash("S3cure!pass")

        assert hasher.verify("S3cure!pass", encoded) is True

    def test_verify_rejects_wrong_password(self, hasher):
        encoded = hasher.hash("S3cure!pass")

        assert hasher.verify("wrong", encoded) is False

    @pytest.mark.parametrize("encoded", ["", "not-a-hash", "$argon2id$garbage"])
    def test_verify_rejects_malformed_hash(self, hasher, encoded):
        assert hasher.verify("S3cure!pass", encoded) is False

    def test_empty_password_cannot_be_hashed(self, hasher):
        with pytest.raises(ValueError):
            hasher.hash("")

    def test_dummy_verify_returns_nothing(self, hasher):
        assert hasher.dummy_verify("anything") is None

    def test_needs_rehash_after_parameter_change(self, hasher):
        encoded = hasher.hash("S3cure!pass")
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", SecurityWarning)
            stronger = Argon2Hasher(memory_cost=2048, time_cost=1, parallelism=1)

        assert hasher.needs_rehash(encoded) is False
        assert stronger.needs_rehash(encoded) is True
        assert stronger.needs_rehash("not-a-hash") is True

    def test_weak_parameters_warn(self):
        with pytest.warns(SecurityWarning):
            Argon2Hasher(memory_cost=1024, time_cost=1, parallelism=1)

    def test_invalid_parameters_rejected(self):
        with pytest.raises(ValueError):
            Argon2Hasher(parallelism=0)

    def test_parameters_exposed(self, hasher):
        assert hasher.parameters["memory_cost"] == 1024
        assert hasher.parameters["time_cost"] == 1
