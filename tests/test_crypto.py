from __future__ import annotations

import base64
import sys
from pathlib import Path

import pytest

# Garante que o pacote dashboard seja importável durante os testes locais
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dashboard.core import config as core_config  # noqa: E402
from dashboard.core import crypto  # noqa: E402
from dashboard.core.crypto import (  # noqa: E402
    AuthenticationError,
    EncryptionError,
    InvalidPayloadError,
    SecretCipher,
)


@pytest.fixture()
def cipher():
    return SecretCipher("correct horse battery staple")


@pytest.mark.parametrize("plaintext", ["p1", "", "senha com acentuação ✓", "x" * 4096])
def test_round_trip(cipher, plaintext):
    assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext


def test_envelope_has_three_base64_parts(cipher):
    nonce, tag, body = cipher.encrypt("p1").split(".")
    assert len(base64.b64decode(nonce)) == 12
    assert len(base64.b64decode(tag)) == 16
    assert len(base64.b64decode(body)) == 2


def test_same_plaintext_gives_different_envelopes(cipher):
    envelopes = {cipher.encrypt("same secret") for _ in range(20)}
    assert len(envelopes) == 20


def test_same_passphrase_decrypts_across_instances():
    envelope = SecretCipher("shared").encrypt("token-123")
    assert SecretCipher("shared").decrypt(envelope) == "token-123"


def test_wrong_key_fails_authentication(cipher):
    envelope = cipher.encrypt("p1")
    with pytest.raises(AuthenticationError):
        SecretCipher("another key").decrypt(envelope)


def test_tampered_ciphertext_fails_authentication(cipher):
    nonce, tag, body = cipher.encrypt("some secret").split(".")
    raw = bytearray(base64.b64decode(body))
    raw[0] ^= 0x01
    tampered = ".".join([nonce, tag, base64.b64encode(bytes(raw)).decode()])
    with pytest.raises(AuthenticationError):
        cipher.decrypt(tampered)


@pytest.mark.parametrize(
    "envelope",
    ["", "abc", "a.b", "a.b.c.d", ".AAAA.AAAA", "!!!.###.$$$", "AAAAAAAAAAAAAAAA.AAAA.AAAA"],
)
def test_malformed_envelopes(cipher, envelope):
    with pytest.raises(InvalidPayloadError):
        cipher.decrypt(envelope)


@pytest.mark.parametrize("passphrase", [None, "", "   "])
def test_blank_passphrase_is_a_configuration_error(passphrase):
    with pytest.raises(EncryptionError):
        SecretCipher(passphrase)


def test_get_cipher_reads_settings_once(monkeypatch):
    monkeypatch.setenv("CLIENT_ENCRYPTION_KEY", "from-env")
    core_config.get_settings.cache_clear()
    crypto.get_cipher.cache_clear()
    try:
        first = crypto.get_cipher()
        assert crypto.get_cipher() is first
        assert SecretCipher("from-env").decrypt(first.encrypt("ok")) == "ok"
    finally:
        core_config.get_settings.cache_clear()
        crypto.get_cipher.cache_clear()


def test_get_cipher_without_key_fails(monkeypatch):
    monkeypatch.delenv("CLIENT_ENCRYPTION_KEY", raising=False)
    core_config.get_settings.cache_clear()
    crypto.get_cipher.cache_clear()
    try:
        with pytest.raises(EncryptionError):
            crypto.get_cipher()
    finally:
        core_config.get_settings.cache_clear()
        crypto.get_cipher.cache_clear()
