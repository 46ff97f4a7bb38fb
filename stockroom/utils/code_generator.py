from __future__ import annotations

import secrets
import time
from typing import Literal, TypedDict

__all__ = [
    "generate_batch_number",
    "generate_sale_code",
    "parse_stock_code",
    "validate_stock_code",
]

BASE36_CHARS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
BATCH_PREFIX = "BN"
SALE_PREFIX = "SLD"


class ParsedCode(TypedDict):
    prefix: str | None
    suffix: str | None
    code_type: Literal["batch", "sale"] | None


def _int_to_base36(num: int) -> str:
    if num == 0:
        return "0"

    digits = []
    while num:
        num, remainder = divmod(num, 36)
        digits.append(BASE36_CHARS[remainder])

    return "".join(reversed(digits))


def _generate_suffix(seed_id: int | None = None) -> str:
    timestamp_component = _int_to_base36(int(time.time() * 1000)).rjust(6, "0")[-4:]
    seed_component = _int_to_base36(abs(seed_id or 0)).rjust(3, "0")[-2:]
    random_component = _int_to_base36(secrets.randbelow(36**4)).rjust(4, "0")
    return f"{timestamp_component}{seed_component}{random_component}".upper()


def generate_batch_number(product_id: int | None = None) -> str:
    """Batch numbers look like BN-XXXXXXXXXX and are unique per product."""
    return f"{BATCH_PREFIX}-{_generate_suffix(product_id)}"


def generate_sale_code() -> str:
    return f"{SALE_PREFIX}-{_generate_suffix()}"


def parse_stock_code(code: str | None) -> ParsedCode:
    if not code or "-" not in code:
        return {"prefix": None, "suffix": None, "code_type": None}

    prefix, suffix = code.split("-", 1)
    code_type: Literal["batch", "sale"] | None = None
    if prefix == BATCH_PREFIX:
        code_type = "batch"
    elif prefix == SALE_PREFIX:
        code_type = "sale"
    return {"prefix": prefix, "suffix": suffix, "code_type": code_type}


def validate_stock_code(code: str | None) -> bool:
    parsed = parse_stock_code(code)
    return parsed["code_type"] is not None and bool(parsed["suffix"])
