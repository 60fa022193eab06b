"""Merchant key normalization used to group transactions by payee"""

import re

_CARD_MASK = re.compile(r"\*+\d+")
_DIGIT_RUNS = re.compile(r"\d{2,}")
_NOISE_WORDS = re.compile(
    r"оплата|списание|покупка|платеж|платёж|payment|debit|purchase|visa|mastercard|mir"
)
_WHITESPACE = re.compile(r"\s+")


def normalize_merchant_key(text: str | None) -> str:
    """
    Canonicalize a counterparty/description into a grouping key.

    Example:
        "Оплата VISA *1234 Ростелеком 0042" -> "ростелеком"
    """
    if not text:
        return ""

    key = text.lower()
    key = _CARD_MASK.sub(" ", key)
    key = _DIGIT_RUNS.sub(" ", key)
    key = _NOISE_WORDS.sub(" ", key)
    key = _WHITESPACE.sub(" ", key)
    return key.strip()
