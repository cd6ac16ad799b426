"""Tests for signer password verification against user_account.passwd."""

import hashlib

import bcrypt
import pytest

from clinica_gateway.common.security import verify_password


class TestVerifyPassword:
    def test_bcrypt_match(self):
        stored = bcrypt.hashpw(b"s3cret", bcrypt.gensalt(rounds=4)).decode()
        assert verify_password("s3cret", stored) is True

    def test_bcrypt_mismatch(self):
        stored = bcrypt.hashpw(b"s3cret", bcrypt.gensalt(rounds=4)).decode()
        assert verify_password("wrong", stored) is False

    def test_legacy_md5(self):
        stored = hashlib.md5(b"s3cret").hexdigest()
        assert verify_password("s3cret", stored) is True
        assert verify_password("S3CRET", stored) is False

    def test_md5_case_insensitive_digest(self):
        stored = hashlib.md5(b"s3cret").hexdigest().upper()
        assert verify_password("s3cret", stored) is True

    @pytest.mark.parametrize("plain, stored", [
        ("", hashlib.md5(b"").hexdigest()),
        ("s3cret", None),
        ("s3cret", ""),
    ])
    def test_empty_inputs_rejected(self, plain, stored):
        assert verify_password(plain, stored) is False

    def test_malformed_bcrypt_hash(self):
        assert verify_password("s3cret", "$2b$not-a-real-hash") is False
