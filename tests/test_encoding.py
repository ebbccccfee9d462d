import binascii

import pytest

from cvmattest.encoding import base64_encode, base64_to_binary, binary_to_base64, binary_to_base64url

SAMPLES = [b"", b"a", b"ab", b"abc", bytes(range(256)), b"\xfb\xff\xfe"]


def test_known_value():
    assert binary_to_base64(b"hello") == "aGVsbG8="


@pytest.mark.parametrize("data", SAMPLES)
def test_standard_round_trip(data):
    assert base64_to_binary(binary_to_base64(data)) == data


@pytest.mark.parametrize("data", SAMPLES)
def test_url_round_trip_and_alphabet(data):
    encoded = binary_to_base64url(data)
    assert not set(encoded) & set("+/=")
    assert base64_to_binary(encoded) == data


def test_url_form_matches_standard_without_padding():
    data = bytes(range(256))
    standard = binary_to_base64(data)
    assert binary_to_base64url(data) == standard.replace("+", "-").replace("/", "_").rstrip("=")


def test_base64_encode_text_round_trip():
    text = "-----BEGIN CERTIFICATE-----\nü"
    assert base64_to_binary(base64_encode(text)).decode("utf-8") == text


def test_invalid_input_raises():
    with pytest.raises(binascii.Error):
        base64_to_binary("not*base64")