"""
Tests for password hashing, the password policy and token helpers.
"""
import pytest

from checkin_auth.errors import ValidationError
from checkin_auth.security import (PasswordManager, PasswordValidator, generate_secure_token,
                                   normalize_email)

from conftest import TEST_PASSWORD


@pytest.mark.parametrize(
    "password, message",
    [
        ("Sh0rt!", "at least 8 characters"),
        ("nouppercase1!", "uppercase"),
        ("NOLOWERCASE1!", "lowercase"),
        ("NoDigitsHere!", "digit"),
        ("NoSpecial123", "special character"),
        ("", "at least 8 characters"),
    ],
)
def test_password_policy_violations(password, message):
    """Test each rule of the password policy."""
    is_valid, errors = PasswordValidator().validate(password)

    assert is_valid is False
    assert any(message in error for error in errors)


def test_password_policy_accepts_strong_password():
    assert PasswordValidator().validate(TEST_PASSWORD) == (True, [])


def test_password_policy_max_length():
    is_valid, errors = PasswordValidator(max_length=12).validate("Aa1!" * 4)
    assert is_valid is False
    assert "at most 12" in errors[0]


def test_validate_or_raise_collects_errors():
    with pytest.raises(ValidationError) as exc_info:
        PasswordValidator().validate_or_raise("short")
    assert len(exc_info.value.errors) >= 3


def test_hash_and_verify(passwords):
    """Test that hashes verify and are salted."""
    first = passwords.hash_password(TEST_PASSWORD)
    second = passwords.hash_password(TEST_PASSWORD)

    assert first != second
    assert first.startswith("$2b$")
    assert passwords.verify_password(TEST_PASSWORD, first) is True
    assert passwords.verify_password("Wr0ng!Pass", first) is False


def test_hash_validates_by_default(passwords):
    with pytest.raises(ValidationError):
        passwords.hash_password("weak")
    assert passwords.hash_password("weak", validate=False)


@pytest.mark.parametrize("hashed", [None, "", "not-a-bcrypt-hash"])
def test_verify_against_unusable_hash(passwords, hashed):
    assert passwords.verify_password(TEST_PASSWORD, hashed) is False


def test_burn_verification_reuses_dummy_hash(passwords):
    passwords.burn_verification(TEST_PASSWORD)
    dummy = passwords._dummy_hash

    passwords.burn_verification("")

    assert dummy is not None
    assert passwords._dummy_hash == dummy


def test_needs_rehash_after_cost_change(passwords):
    """Test that hashes made with a lower cost are flagged for rehashing."""
    hashed = passwords.hash_password(TEST_PASSWORD)
    stronger = PasswordManager(validator=PasswordValidator(), rounds=5)

    assert passwords.needs_rehash(hashed) is False
    assert stronger.needs_rehash(hashed) is True


def test_generate_secure_token():
    tokens = {generate_secure_token(32) for _ in range(10)}
    assert len(tokens) == 10
    assert all(len(token) == 43 for token in tokens)


def test_normalize_email():
    assert normalize_email("  Officer@Court.ORG ") == "officer@court.org"
    assert normalize_email(None) == ""
