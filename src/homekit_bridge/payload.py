"""Payload rendering and validation.

Templates are free text with zero or more ``{{value}}`` placeholders. The value
is substituted literally with no escaping, so the template author is
responsible for producing valid JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from homekit_bridge.const import VALUE_PLACEHOLDER
from homekit_bridge.exceptions import EncodingFailure, InvalidPayloadError

__all__ = [
    "PayloadValidation",
    "encode_payload",
    "render",
    "validate",
]


@dataclass(frozen=True)
class PayloadValidation:
    """Result of ``validate``. ``error`` is None when the text parsed."""

    text: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise InvalidPayloadError(self.text, self.error)


def render(template: str, value: object) -> str:
    """Trim ``template`` and replace every placeholder with ``str(value)``."""
    return template.strip().replace(VALUE_PLACEHOLDER, str(value))


def validate(text: str) -> PayloadValidation:
    try:
        _ = json.loads(text)
    except json.JSONDecodeError as e:
        return PayloadValidation(text=text, error=f"{e.msg} at line {e.lineno} column {e.colno}")
    return PayloadValidation(text=text)


def encode_payload(text: str) -> bytes:
    """UTF-8 encode the payload, raising EncodingFailure for unencodable text (lone surrogates)."""
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingFailure(str(e)) from e
