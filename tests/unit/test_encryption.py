"""Unit tests for field encryption."""

from __future__ import annotations

import base64

import pytest

from inbox_synopsis.exceptions import EncryptionError
from inbox_synopsis.models import EncryptedField
from inbox_synopsis.security import FieldEncryptor, resolve_key
from tests.fakes import TEST_KEY


@pytest.fixture
def encryptor() -> FieldEncryptor:
    return FieldEncryptor.from_setting(TEST_KEY)


def test_round_trip(encryptor: FieldEncryptor) -> None:
    field = encryptor.encrypt("Quarterly report ready for review.")

    assert "Quarterly" not in field.ciphertext
    assert len(field.auth_tag) == 32
    assert encryptor.decrypt(field) == "Quarterly report ready for review."


def test_same_plaintext_gets_fresh_nonce(encryptor: FieldEncryptor) -> None:
    first = encryptor.encrypt("same")
    second = encryptor.encrypt("same")

    assert first.ciphertext != second.ciphertext


@pytest.mark.parametrize(
    "value",
    [
        TEST_KEY,
        "00" * 32,
        base64.b64encode(bytes(range(32))).decode("ascii"),
        base64.urlsafe_b64encode(bytes(range(200, 232))).decode("ascii").rstrip("="),
    ],
)
def test_resolve_key_encodings(value: str) -> None:
    assert len(resolve_key(value)) == 32


@pytest.mark.parametrize("value", [None, "", "too-short", "ab" * 20])
def test_resolve_key_rejects_bad_material(value) -> None:
    with pytest.raises(EncryptionError):
        resolve_key(value)


def test_tampered_ciphertext_fails(encryptor: FieldEncryptor) -> None:
    field = encryptor.encrypt("secret")
    flipped = field.ciphertext[:-2] + ("00" if field.ciphertext[-2:] != "00" else "11")

    with pytest.raises(EncryptionError):
        encryptor.decrypt(EncryptedField(ciphertext=flipped, auth_tag=field.auth_tag))


def test_wrong_key_fails(encryptor: FieldEncryptor) -> None:
    field = encryptor.encrypt("secret")
    other = FieldEncryptor(bytes(32))

    with pytest.raises(EncryptionError):
        other.decrypt(field)


def test_malformed_fields(encryptor: FieldEncryptor) -> None:
    with pytest.raises(EncryptionError):
        encryptor.decrypt(EncryptedField(ciphertext="zz", auth_tag="00" * 16))
    with pytest.raises(EncryptionError):
        encryptor.decrypt(EncryptedField(ciphertext="00", auth_tag="00" * 16))


def test_optional_helpers(encryptor: FieldEncryptor) -> None:
    assert encryptor.encrypt_optional(None) is None
    assert encryptor.decrypt_optional(None) is None
    assert encryptor.decrypt_optional(EncryptedField(ciphertext="00" * 20, auth_tag="00" * 16)) is None
    assert encryptor.decrypt_optional(encryptor.encrypt("x")) == "x"
