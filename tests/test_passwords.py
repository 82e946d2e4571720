"""Unit tests for auth/passwords.py -- bcrypt hashing and verification."""

from auth.passwords import DUMMY_HASH, hash_password, verify_password


class TestPasswordHashing:
    def test_round_trip_verifies(self) -> None:
        hashed = hash_password("correct horse battery")
        assert verify_password("correct horse battery", hashed) is True

    def test_different_password_fails(self) -> None:
        hashed = hash_password("correct horse battery")
        assert verify_password("correct horse battery!", hashed) is False

    def test_same_password_gets_distinct_salts(self) -> None:
        """Two hashes of one password differ but both verify."""
        first = hash_password("s3cret-pass")
        second = hash_password("s3cret-pass")
        assert first != second
        assert verify_password("s3cret-pass", first)
        assert verify_password("s3cret-pass", second)

    def test_hash_never_contains_plaintext(self) -> None:
        assert "plaintextpw" not in hash_password("plaintextpw")


class TestVerifyEdgeCases:
    def test_missing_hash_is_a_failed_verification(self) -> None:
        assert verify_password("anything", None) is False
        assert verify_password("anything", "") is False

    def test_malformed_hash_is_a_failed_verification(self) -> None:
        """A corrupt stored hash must not raise out of verify_password."""
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_dummy_hash_rejects_arbitrary_input(self) -> None:
        assert verify_password("password123", DUMMY_HASH) is False
