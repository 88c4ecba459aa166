from __future__ import annotations

import re
from typing import Any

MASK_CHAR = "*"
EMPTY_MASK = "***"

_DIGIT_PATTERN = re.compile(r"\d")


def mask_digits(value: str, *, mask: str = MASK_CHAR) -> str:
    return _DIGIT_PATTERN.sub(mask, value)


def redact_client(record: dict[str, Any]) -> dict[str, Any]:
    """Mask document numbers (CPF, CNPJ, RG) before a client leaves the system.

    Returns a new dict; the input is left untouched.
    """
    documents = record.get("documents")
    if not isinstance(documents, list):
        return dict(record)
    redacted: list[Any] = []
    for item in documents:
        if not isinstance(item, dict):
            redacted.append(item)
            continue
        number = item.get("number")
        masked = dict(item)
        if isinstance(number, str) and number:
            masked["number"] = mask_digits(number)
        elif isinstance(number, (int, float)) and not isinstance(number, bool):
            masked["number"] = mask_digits(str(number))
        else:
            masked["number"] = EMPTY_MASK
        redacted.append(masked)
    result = dict(record)
    result["documents"] = redacted
    return result
