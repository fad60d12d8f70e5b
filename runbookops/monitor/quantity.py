"""资源数量解析：CPU（核 / 毫核）与内存（二进制或十进制后缀）。"""
from __future__ import annotations

import math
import re
from typing import Optional

_MEMORY_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)([A-Za-z]+)?$")

BINARY_MULTIPLIERS = {
    "Ki": 1024,
    "Mi": 1024 ** 2,
    "Gi": 1024 ** 3,
    "Ti": 1024 ** 4,
    "Pi": 1024 ** 5,
    "Ei": 1024 ** 6,
}

DECIMAL_MULTIPLIERS = {
    "k": 1000,
    "K": 1000,
    "M": 1000 ** 2,
    "G": 1000 ** 3,
    "T": 1000 ** 4,
    "P": 1000 ** 5,
    "E": 1000 ** 6,
}


def _to_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def parse_cpu_quantity_to_cores(quantity: Optional[str]) -> float:
    """CPU 数量转核数：500m -> 0.5，2 -> 2.0，无法解析返回 0。"""
    if not quantity:
        return 0.0
    trimmed = quantity.strip()
    if trimmed.endswith("m"):
        return _to_float(trimmed[:-1]) / 1000
    return _to_float(trimmed)


def parse_memory_quantity_to_bytes(quantity: Optional[str]) -> int:
    """内存数量转字节：256Mi -> 268435456，1G -> 1000000000，无法解析返回 0。"""
    if not quantity:
        return 0
    match = _MEMORY_RE.match(quantity.strip())
    if not match:
        return 0

    value = _to_float(match.group(1))
    unit = match.group(2) or ""
    if unit in BINARY_MULTIPLIERS:
        return round(value * BINARY_MULTIPLIERS[unit])
    if unit in DECIMAL_MULTIPLIERS:
        return round(value * DECIMAL_MULTIPLIERS[unit])
    if unit:
        return 0
    return round(value)
