import pytest

from cvmattest import log
from cvmattest.log import AttestationLogger, LogLevel
from cvmattest.native_converter import (
    BlockCipherMode,
    BlockCipherPadding,
    CipherAlgorithm,
    to_block_cipher_mode,
    to_block_cipher_padding,
    to_cipher_algorithm,
)


class RecordingLogger(AttestationLogger):
    def __init__(self):
        self.messages = []

    def log(self, log_tag, level, function, line, message):
        self.messages.append((level, message))


@pytest.fixture
def recorder(monkeypatch):
    logger = RecordingLogger()
    monkeypatch.setattr(log, "_logger", logger)
    return logger


def test_known_values_map():
    assert to_block_cipher_mode("ChainingModeGCM") is BlockCipherMode.CHAINING_MODE_GCM
    assert to_block_cipher_padding("PKCS7") is BlockCipherPadding.PKCS7
    assert to_cipher_algorithm("AES") is CipherAlgorithm.AES


@pytest.mark.parametrize(
    "func, value, message",
    [
        (to_block_cipher_mode, "ChainingModeCBC", "Invalid Block mode"),
        (to_block_cipher_padding, "pkcs7", "Invalid Block padding"),
        (to_cipher_algorithm, "DES", "Invalid Cipher Algorithm"),
    ],
)
def test_unknown_values_raise_and_log(recorder, func, value, message):
    with pytest.raises(ValueError, match=value):
        func(value)
    assert recorder.messages == [(LogLevel.ERROR, message)]


@pytest.mark.parametrize("func", [to_block_cipher_mode, to_block_cipher_padding, to_cipher_algorithm])
def test_empty_string_rejected(func):
    with pytest.raises(ValueError):
        func("")


def test_invalid_member_is_not_reachable_by_name():
    with pytest.raises(ValueError):
        to_cipher_algorithm("Invalid")