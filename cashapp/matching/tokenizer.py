"""
Reference Tokenizer - extracts receivable identifiers from free text.

Two passes over memo / payer / remittance subject text:
1. Explicit INV- or CM-prefixed references ("INV-51201", "cm# 90003")
2. Bare numeric runs, read as implicit invoice numbers ("51201")

Every token is reduced to a sanitized canonical form (uppercase,
alphanumerics only, OCR confusions O->0 and I->1 fixed in the identifier
body) and tokens are de-duplicated on that form. The tokenizer is pure so
that match explanations can be reproduced for audit.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import Settings, get_settings

INVOICE_PREFIX = "INV"
CREDIT_MEMO_PREFIX = "CM"

PREFIXED_TOKEN = re.compile(r"\b(INV|CM)[\s#:\-]*([A-Z0-9]+)\b", re.IGNORECASE)
NON_ALPHANUMERIC = re.compile(r"[^A-Z0-9]")
KNOWN_PREFIX = re.compile(r"^(INV|CM)")
LEADING_LETTERS = re.compile(r"^[A-Z]*")

# Letters commonly misread for digits by OCR and manual keying
OCR_TRANSLATION = str.maketrans({"O": "0", "I": "1"})


def sanitize_reference(value: str) -> str:
    """
    Canonical form of a reference.

    The alphabetic prefix is kept as-is; OCR confusions are only corrected
    in the remainder, so "inv# 2oo61" becomes "INV20061".
    """
    compact = NON_ALPHANUMERIC.sub("", value.upper())
    match = KNOWN_PREFIX.match(compact)
    prefix = match.group(1) if match else LEADING_LETTERS.match(compact).group(0)
    body = compact[len(prefix):]
    return prefix + body.translate(OCR_TRANSLATION)


def strip_prefix(sanitized: str) -> str:
    """Numeric core of a sanitized reference ("INV20061" -> "20061")."""
    return LEADING_LETTERS.sub("", sanitized)


def build_context(*parts: Optional[str]) -> str:
    """Join the non-empty free-text fields that may carry references."""
    return " ".join(part.strip() for part in parts if part and part.strip())


@dataclass
class TokenizationResult:
    """Raw tokens and their sanitized forms, in order of first appearance."""
    tokens: List[str] = field(default_factory=list)
    sanitized_tokens: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.sanitized_tokens)

    def __len__(self) -> int:
        return len(self.sanitized_tokens)


class ReferenceTokenizer:
    """Extracts invoice and credit-memo references from free text."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.min_bare_digits = self.settings.min_bare_digits
        self.valid_body = re.compile(
            r"[A-Z]*\d{%d,}" % self.settings.min_prefixed_digits
        )
        self.bare_number = re.compile(r"\b\d{%d,}\b" % self.min_bare_digits)

    def tokenize(self, text: str) -> TokenizationResult:
        """
        Extract tokens from free text.

        Args:
            text: Concatenated memo, payer name and remittance subject

        Returns:
            TokenizationResult with raw and sanitized tokens
        """
        result = TokenizationResult()
        if not text:
            return result

        seen = set()
        claimed = []

        def add(raw: str, sanitized: str) -> None:
            if sanitized in seen:
                return
            seen.add(sanitized)
            result.tokens.append(raw)
            result.sanitized_tokens.append(sanitized)

        # Pass 1: explicit INV / CM references
        for match in PREFIXED_TOKEN.finditer(text):
            sanitized = sanitize_reference(match.group(0))
            if not self.valid_body.fullmatch(strip_prefix(sanitized)):
                continue
            claimed.append(match.span())
            add(match.group(0), sanitized)

        # Pass 2: bare numeric runs outside prefixed references are implicit invoices
        for match in self.bare_number.finditer(text):
            start, end = match.span()
            if any(lo <= start and end <= hi for lo, hi in claimed):
                continue
            digits = match.group(0)
            add(f"{INVOICE_PREFIX}-{digits}", f"{INVOICE_PREFIX}{digits}")

        return result
