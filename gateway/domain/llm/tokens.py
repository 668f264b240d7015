import math


CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Fixed, provider-independent token estimate (about four characters per token)"""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
