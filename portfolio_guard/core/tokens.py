# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Token Estimation

A deterministic stand-in for a real tokenizer: ~4 characters per token
for English text. Budgeting and cache accounting only need an estimate
that is stable across processes, so no model-specific tokenizer is used.
"""

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the token count of `text` (ceil(len / 4))."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def max_chars_for_tokens(tokens: int) -> int:
    """Largest character count whose estimate stays within `tokens`."""
    return max(tokens, 0) * CHARS_PER_TOKEN


__all__ = ["CHARS_PER_TOKEN", "estimate_tokens", "max_chars_for_tokens"]
