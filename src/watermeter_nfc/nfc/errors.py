# src/watermeter_nfc/nfc/errors.py
# Error taxonomy for tag reads. TransportError/FormatError abort a tag event,
# TruncationError/ParseError are collected as warnings and never abort it.


class TagError(Exception):
    """Base class for everything that can go wrong while reading a meter tag."""


class TransportError(TagError):
    """A page read through the reader failed."""


class FormatError(TagError):
    """No usable NDEF TLV on the tag, or not even the TLV header is readable."""


class TruncationError(TagError):
    """Declared message length exceeds what the tag delivered (soft)."""

    def __init__(self, declared: int, available: int):
        super().__init__(f"message truncated: declared {declared} bytes, {available} available")
        self.declared = declared
        self.available = available


class ParseError(TagError):
    """Report text could not be parsed (or one field of it could not)."""

    def __init__(self, msg: str, field: str | None = None):
        super().__init__(msg)
        self.field = field
