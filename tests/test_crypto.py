"""Tests for AES-256-GCM secret encryption."""

import base64

import pytest

from shared.crypto import CipherConfigError, SecretCipher, SecretIntegrityError

from tests.conftest import TEST_ENCRYPTION_KEY

OTHER_KEY = "ff" * 32


@pytest.fixture
def cipher():
    return SecretCipher(TEST_ENCRYPTION_KEY)


class TestRoundTrip:
    """Test encrypt/decrypt."""

    @pytest.mark.parametrize(
        "plaintext",
        ["", "123456:ABC-DEF1234ghIkl-zyx57W2v1u123ew11", "юникод 🔴", "x" * 4096],
    )
    def test_decrypt_inverts_encrypt(self, cipher, plaintext):
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_nonce_is_fresh(self, cipher):
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_blob_layout(self, cipher):
        raw = base64.b64decode(cipher.encrypt("abc"))
        # nonce(12) + tag(16) + ciphertext(len(plaintext))
        assert len(raw) == 12 + 16 + 3


class TestIntegrity:
    """Test that tampering is detected."""

    @pytest.mark.parametrize("position", [0, 12, 20, -1])
    def test_flipped_byte_raises(self, cipher, position):
        raw = bytearray(base64.b64decode(cipher.encrypt("secret-token")))
        raw[position] ^= 0x01
        with pytest.raises(SecretIntegrityError):
            cipher.decrypt(base64.b64encode(bytes(raw)).decode())

    def test_wrong_key_raises(self, cipher):
        blob = cipher.encrypt("secret-token")
        with pytest.raises(SecretIntegrityError):
            SecretCipher(OTHER_KEY).decrypt(blob)

    def test_too_short_blob_raises(self, cipher):
        with pytest.raises(SecretIntegrityError):
            cipher.decrypt(base64.b64encode(b"\x00" * 27).decode())

    def test_invalid_base64_raises(self, cipher):
        with pytest.raises(SecretIntegrityError):
            cipher.decrypt("not base64 at all!")


class TestConfiguration:
    """Test key validation."""

    @pytest.mark.parametrize("key", [None, "", "abc", "zz" * 32, "00" * 31, "00" * 33])
    def test_bad_key_is_unavailable(self, key):
        cipher = SecretCipher(key)
        assert cipher.is_available() is False
        with pytest.raises(CipherConfigError):
            cipher.encrypt("x")
        with pytest.raises(CipherConfigError):
            cipher.decrypt("AAAA")

    def test_valid_key_is_available(self, cipher):
        assert cipher.is_available() is True

    def test_config_error_is_not_an_integrity_error(self):
        assert not issubclass(CipherConfigError, SecretIntegrityError)
