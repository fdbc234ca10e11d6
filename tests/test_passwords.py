"""Unit tests for auth/passwords.py -- SecretHasher.

Covers:
- hash() never returns the plaintext and salts every call
- verify() accepts the right secret and rejects any other
- verify() returns False (never raises) for malformed or missing digests
"""

from __future__ import annotations

import pytest

from auth.passwords import SecretHasher


class TestHashAndVerify:
    def test_digest_is_not_plaintext(self, hasher: SecretHasher) -> None:
        digest = hasher.hash("Strong1!")
        assert digest != "Strong1!"
        assert digest.startswith("$2")

    def test_same_plaintext_gives_different_digests(self, hasher: SecretHasher) -> None:
        """Fresh salt per call -- equal passwords must not produce equal digests."""
        assert hasher.hash("Strong1!") != hasher.hash("Strong1!")

    @pytest.mark.parametrize("secret", ["Strong1!", "Aa1@aaaa", "unicode-ü-Pass1!"])
    def test_verify_accepts_same_secret(self, hasher: SecretHasher, secret: str) -> None:
        assert hasher.verify(secret, hasher.hash(secret)) is True

    @pytest.mark.parametrize("other", ["strong1!", "Strong1", "Strong1!!", ""])
    def test_verify_rejects_other_plaintext(self, hasher: SecretHasher, other: str) -> None:
        digest = hasher.hash("Strong1!")
        assert hasher.verify(other, digest) is False

    def test_digest_embeds_cost_factor(self) -> None:
        """The digest carries its own parameters, so verification needs no side channel."""
        digest = SecretHasher(rounds=5).hash("Strong1!")
        assert digest.split("$")[2] == "05"
        assert SecretHasher(rounds=4).verify("Strong1!", digest) is True


class TestMalformedDigests:
    @pytest.mark.parametrize("digest", ["not-a-bcrypt-hash", "$2b$04$short", "", None])
    def test_malformed_digest_returns_false(self, hasher: SecretHasher, digest) -> None:
        assert hasher.verify("Strong1!", digest) is False

    def test_verify_dummy_does_not_raise(self, hasher: SecretHasher) -> None:
        hasher.verify_dummy("anything")
