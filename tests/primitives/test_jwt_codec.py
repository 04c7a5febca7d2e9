import hashlib
import hmac
import json

import pytest

from verity.models.errors import MalformedToken
from verity.primitives.jwt import (
    CompactToken,
    base64url_decode,
    base64url_encode,
    create_hmac_signed_jwt,
    parse_token,
)


class TestBase64Url:
    @pytest.mark.parametrize(
        "data",
        [b"", b"\x00", b"\xff\xfe", b"hello world", bytes(range(256))],
    )
    def test_decode_recovers_encoded_bytes(self, data: bytes):
        # Act
        encoded = base64url_encode(data)

        # Assert
        assert "=" not in encoded
        assert "+" not in encoded and "/" not in encoded
        assert base64url_decode(encoded) == data

    def test_decode_accepts_padded_input(self):
        # Arrange
        padded = base64url_encode(b"ab") + "=="

        # Act / Assert
        assert base64url_decode(padded) == b"ab"

    def test_decode_translates_url_alphabet(self):
        # Arrange - 0xfb 0xff encodes to "-_8" in base64url
        encoded = base64url_encode(b"\xfb\xff")

        # Assert
        assert encoded == "-_8"
        assert base64url_decode(encoded) == b"\xfb\xff"

    def test_decode_rejects_garbage(self):
        with pytest.raises(MalformedToken):
            base64url_decode("not*base64!")


class TestCompactToken:
    def setup_method(self):
        self.header = {"alg": "HS256", "typ": "JWT", "kid": "k1"}
        self.payload = {"sub": "user-42", "aud": ["a", "b"], "n": 1}
        self.token = (
            base64url_encode(json.dumps(self.header))
            + "."
            + base64url_encode(json.dumps(self.payload))
            + "."
            + base64url_encode(b"signature-bytes")
        )

    def test_recovers_header_and_payload(self):
        # Act
        token = parse_token(self.token)

        # Assert
        assert token.header() == self.header
        assert token.payload() == self.payload
        assert token.signature() == b"signature-bytes"

    def test_decoding_is_repeatable(self):
        # Arrange
        token = CompactToken(self.token)

        # Act / Assert
        assert token.payload() == token.payload()
        assert str(token) == self.token

    def test_signing_input_is_the_undecoded_segments(self):
        # Arrange
        header_segment, payload_segment, _ = self.token.split(".")

        # Act
        token = CompactToken(self.token)

        # Assert
        assert token.signing_input == f"{header_segment}.{payload_segment}".encode("ascii")

    @pytest.mark.parametrize("raw", ["", "a.b", "a.b.c.d", "onlyone"])
    def test_rejects_wrong_segment_count(self, raw: str):
        with pytest.raises(MalformedToken):
            CompactToken(raw)

    def test_empty_signature_is_malformed(self):
        # Arrange
        header_segment, payload_segment, _ = self.token.split(".")
        token = CompactToken(f"{header_segment}.{payload_segment}.")

        # Act / Assert
        with pytest.raises(MalformedToken):
            token.signature()

    def test_non_json_payload_is_malformed(self):
        # Arrange
        header_segment = self.token.split(".")[0]
        token = CompactToken(f"{header_segment}.{base64url_encode('not json')}.c2ln")

        # Act / Assert
        with pytest.raises(MalformedToken):
            token.payload()

    def test_json_array_header_is_malformed(self):
        # Arrange
        token = CompactToken(f"{base64url_encode('[1, 2]')}.e30.c2ln")

        # Act / Assert
        with pytest.raises(MalformedToken):
            token.header()

    @pytest.mark.parametrize("position", [0, 1, 2])
    def test_rejects_segments_outside_base64url_alphabet(self, position: int):
        # Arrange
        parts = self.token.split(".")
        parts[position] = parts[position][:-1] + "é"

        # Act / Assert
        with pytest.raises(MalformedToken):
            CompactToken(".".join(parts))

    @pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_json_constants_are_malformed(self, constant: str):
        # Arrange
        header_segment = self.token.split(".")[0]
        payload = base64url_encode('{"exp": %s}' % constant)
        token = CompactToken(f"{header_segment}.{payload}.c2ln")

        # Act / Assert
        with pytest.raises(MalformedToken):
            token.payload()

    def test_tokens_compare_by_serialization(self):
        assert CompactToken(self.token) == CompactToken(self.token)
        assert len({CompactToken(self.token), CompactToken(self.token)}) == 1


class TestCreateHmacSignedJwt:
    def test_signature_covers_header_and_payload(self):
        # Act
        jwt = create_hmac_signed_jwt({"iss": "client"}, "HS256", "secret")

        # Assert
        token = CompactToken(jwt)
        expected = hmac.new(b"secret", token.signing_input, hashlib.sha256).digest()
        assert token.header() == {"alg": "HS256", "typ": "JWT"}
        assert token.payload() == {"iss": "client"}
        assert token.signature() == expected

    def test_rejects_non_hmac_algorithm(self):
        with pytest.raises(ValueError):
            create_hmac_signed_jwt({}, "RS256", "secret")
