from __future__ import annotations

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def simple_hash(value: str) -> str:
    """32-bit rolling string hash rendered in base 36. Not collision resistant."""

    acc = 0
    for char in value:
        acc = (acc * 31 + ord(char)) & 0xFFFFFFFF
    if acc & 0x80000000:
        acc -= 1 << 32
    return to_base36(abs(acc))


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_DIGITS[remainder])
    return "".join(reversed(digits))
