import pytest

from app import create_app
from security.errors import ConfigurationError, TokenDecryptionError
from security.token_crypto import TokenCipher

KEY = "3c" * 32


class TestConfiguredCipher:
    def test_envelope_has_three_hex_segments(self):
        envelope = TokenCipher(KEY).encrypt("ya29.secret-access-token")

        nonce, tag, ciphertext = envelope.split(":")
        assert len(nonce) == 32
        assert len(tag) == 32
        assert ciphertext
        assert "ya29" not in envelope

    def test_encryption_is_not_deterministic(self):
        cipher = TokenCipher(KEY)

        first = cipher.encrypt("same-token")
        second = cipher.encrypt("same-token")

        assert first != second
        assert cipher.decrypt(first) == cipher.decrypt(second) == "same-token"

    def test_legacy_plaintext_passes_through_decrypt(self):
        cipher = TokenCipher(KEY)

        assert cipher.decrypt("ya29.plain-old-token") == "ya29.plain-old-token"
        # three segments but not the right shape
        assert cipher.decrypt("a:b:c") == "a:b:c"
        assert cipher.decrypt(("ab" * 16) + ":" + ("cd" * 16) + ":xyz") == ("ab" * 16) + ":" + ("cd" * 16) + ":xyz"

    def test_tampered_envelope_fails_closed(self):
        cipher = TokenCipher(KEY)
        nonce, tag, ciphertext = cipher.encrypt("refresh-token").split(":")
        flipped = ("0" if ciphertext[0] != "0" else "1") + ciphertext[1:]

        with pytest.raises(TokenDecryptionError):
            cipher.decrypt(f"{nonce}:{tag}:{flipped}")

    def test_wrong_key_fails_closed(self):
        envelope = TokenCipher(KEY).encrypt("token")

        with pytest.raises(TokenDecryptionError):
            TokenCipher("4d" * 32).decrypt(envelope)

    def test_none_is_left_alone(self):
        cipher = TokenCipher(KEY)
        assert cipher.encrypt(None) is None
        assert cipher.decrypt(None) is None


class TestPassThrough:
    def test_without_key_values_are_unchanged(self):
        cipher = TokenCipher(None)

        assert not cipher.is_configured
        assert cipher.encrypt("ya29.token") == "ya29.token"
        assert cipher.decrypt("ya29.token") == "ya29.token"


class TestKeyValidation:
    def test_non_hex_key_is_rejected(self):
        with pytest.raises(ConfigurationError):
            TokenCipher("not-a-hex-key" * 5)

    def test_short_key_is_rejected(self):
        with pytest.raises(ConfigurationError):
            TokenCipher("ab" * 16)

    def test_app_refuses_to_start_without_required_key(self):
        with pytest.raises(ConfigurationError):
            create_app({
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": "sqlite://",
                "OAUTH_ENCRYPTION_KEY": None,
                "REQUIRE_TOKEN_ENCRYPTION": True,
            })

    def test_app_starts_in_pass_through_mode_without_key(self):
        app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "OAUTH_ENCRYPTION_KEY": None,
            "REQUIRE_TOKEN_ENCRYPTION": False,
        })
        assert not app.extensions["token_cipher"].is_configured
