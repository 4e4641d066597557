"""Tax document normalization.

Brazilian customer documents arrive formatted in many ways
("123.456.789-09", "123456789 09", 12345678909). Matching always happens on
the bare digit string.

Examples:
    "123.456.789-09"     → "12345678909"   (CPF, individual)
    "12.345.678/0001-95" → "12345678000195" (CNPJ, company)
"""

import re
from typing import Optional, Union

CPF_LENGTH = 11
CNPJ_LENGTH = 14

_NON_DIGITS = re.compile(r"\D")


def digits_only(value: Optional[Union[str, int]]) -> str:
    """Strip everything but digits; None becomes "". Used for phones and CEPs."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def document_digits(value: Optional[Union[str, int]]) -> str:
    """Bare digits of a CPF/CNPJ."""
    return digits_only(value)


def is_consumer_default(value: Optional[Union[str, int]]) -> bool:
    """True when the document cannot identify a customer (absent or < 11 digits)."""
    return len(document_digits(value)) < CPF_LENGTH


def is_well_formed(value: Optional[Union[str, int]]) -> bool:
    """True for an 11-digit CPF or a 14-digit CNPJ."""
    return len(document_digits(value)) in (CPF_LENGTH, CNPJ_LENGTH)


def person_type(value: Optional[Union[str, int]]) -> str:
    """Bling `tipo` for a document: "F" (individual) or "J" (company)."""
    return "J" if len(document_digits(value)) == CNPJ_LENGTH else "F"


def documents_match(a: Optional[Union[str, int]], b: Optional[Union[str, int]]) -> bool:
    digits_a = document_digits(a)
    return bool(digits_a) and digits_a == document_digits(b)
