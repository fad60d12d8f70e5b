"""资源数量解析测试。"""
import pytest

from runbookops.monitor.quantity import parse_cpu_quantity_to_cores, parse_memory_quantity_to_bytes


@pytest.mark.parametrize("quantity,expected", [
    ("500m", 0.5),
    ("250m", 0.25),
    ("2", 2.0),
    ("1.5", 1.5),
    (" 100m ", 0.1),
    ("", 0.0),
    (None, 0.0),
    ("abc", 0.0),
    ("xm", 0.0),
])
def test_parse_cpu(quantity, expected):
    assert parse_cpu_quantity_to_cores(quantity) == pytest.approx(expected)


@pytest.mark.parametrize("quantity,expected", [
    ("256Mi", 256 * 1024 * 1024),
    ("1Gi", 1024 ** 3),
    ("512Ki", 512 * 1024),
    ("1G", 1_000_000_000),
    ("500M", 500_000_000),
    ("100k", 100_000),
    ("1.5Gi", int(1.5 * 1024 ** 3)),
    ("1048576", 1048576),
    ("12Xi", 0),
    ("12Zi", 0),
    ("64MB", 0),
    ("", 0),
    (None, 0),
    ("lots", 0),
    ("-5Mi", 0),
])
def test_parse_memory(quantity, expected):
    assert parse_memory_quantity_to_bytes(quantity) == expected
