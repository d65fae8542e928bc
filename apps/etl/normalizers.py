"""
Field Normalizers - Raw Cell Values to Canonical Values

Pure functions: the same input always yields the same output, and none of them
raise. A value that cannot be interpreted becomes None so the record still
flows through validation and scoring.
"""

import math
import re
from typing import Any, Mapping, Optional

from utils.schemas import NormalizedRecord

# (substring, canonical label) pairs, checked in order
CANONICAL_LABELS: dict[str, tuple[tuple[str, str], ...]] = {
    "cpu_brand": (("intel", "Intel"), ("amd", "AMD")),
    "disk_type": (("ssd", "SSD"), ("nvme", "NVME"), ("hdd", "HDD")),
    "os_name": (
        ("windows 11", "Windows 11"),
        ("win11", "Windows 11"),
        ("windows 10", "Windows 10"),
        ("win10", "Windows 10"),
        ("linux", "Linux"),
        ("ubuntu", "Linux"),
    ),
    "browser_name": (("chrome", "Chrome"), ("firefox", "Firefox"), ("edge", "Edge")),
    "connection_type": (("fibra", "Fibra"), ("fiber", "Fibra"), ("cable", "Cable"), ("dsl", "DSL")),
    "atencion": (("home", "HO"), ("ho", "HO"), ("site", "OS"), ("os", "OS")),
}

TEXT_FIELDS = (
    "proveedor",
    "sitio",
    "cpu_model",
    "os_version",
    "browser_version",
    "antivirus_brand",
    "antivirus_model",
    "headset_brand",
    "headset_model",
    "isp_name",
)

_NUMBER = r"(\d+(?:[.,]\d+)?)"
_CPU_UNIT_RE = re.compile(_NUMBER + r"\s*(ghz|mhz)\b", re.IGNORECASE)
_RAM_UNIT_RE = re.compile(_NUMBER + r"\s*(gb|mb)\b", re.IGNORECASE)
_DISK_UNIT_RE = re.compile(_NUMBER + r"\s*(tb|gb|mb)\b", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(_NUMBER)
_INTEGER_RE = re.compile(r"(\d+)")

# Larger readings are typos or overflowed cells, treated as unparseable
MAX_QUANTITY = 10**9


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    if not math.isfinite(value):
        raise ValueError(f"Cannot round non-finite value {value!r}")
    return int(math.floor(value + 0.5))


def _plausible(number: Any) -> Optional[float]:
    """The number as a float, or None when non-finite or beyond MAX_QUANTITY."""
    if isinstance(number, float) and not math.isfinite(number):
        return None
    if abs(number) > MAX_QUANTITY:
        return None
    return float(number)


def clean_value(value: Any) -> Any:
    """Return None for empty cells, trimmed text otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def to_text(value: Any) -> Optional[str]:
    """Render a cell as text; integral floats lose their '.0'."""
    value = clean_value(value)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip() or None


def map_label(value: Any, field: str) -> Optional[Any]:
    """Substring-map a value onto its canonical label, or pass it through."""
    value = clean_value(value)
    if value is None:
        return None

    lowered = str(value).lower()
    for needle, label in CANONICAL_LABELS[field]:
        if needle in lowered:
            return label
    return to_text(value)


def _to_float(number: str) -> float:
    return float(number.replace(",", "."))


def _number_and_unit(text: str, unit_re: re.Pattern, default_unit: str) -> Optional[tuple[float, str]]:
    # A number carrying an explicit unit wins over the first bare number
    match = unit_re.search(text)
    if match:
        return _to_float(match.group(1)), match.group(2).lower()

    bare = _BARE_NUMBER_RE.search(text)
    if not bare:
        return None
    return _to_float(bare.group(1)), default_unit


def normalize_cpu_speed(value: Any) -> Optional[float]:
    """'2.4 GHz' -> 2.4, '2400MHz' -> 2.4, '2,8' -> 2.8 (GHz assumed).

    'Core i5-8250U @ 1.60GHz' -> 1.6: the number with a unit is preferred.
    """
    value = clean_value(value)
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return _plausible(value)

    parsed = _number_and_unit(str(value), _CPU_UNIT_RE, "ghz")
    if parsed is None:
        return None

    number, unit = parsed
    return _plausible(number / 1000 if unit == "mhz" else number)


def _size_in_gb(value: Any, unit_re: re.Pattern) -> Optional[float]:
    value = clean_value(value)
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return _plausible(value)

    parsed = _number_and_unit(str(value), unit_re, "gb")
    if parsed is None:
        return None

    number, unit = parsed
    if unit == "tb":
        number *= 1024
    elif unit == "mb":
        number /= 1024
    return _plausible(number)


def normalize_ram(value: Any) -> Optional[int]:
    """'16 GB' -> 16, '16384 MB' -> 16, 'DDR4 8GB' -> 8."""
    size = _size_in_gb(value, _RAM_UNIT_RE)
    return None if size is None else round_half_up(size)


def normalize_disk_capacity(value: Any) -> Optional[int]:
    """'1TB' -> 1024, '512 GB' -> 512, '256000MB' -> 250."""
    size = _size_in_gb(value, _DISK_UNIT_RE)
    return None if size is None else round_half_up(size)


def normalize_speed(value: Any) -> Optional[int]:
    """First integer of the value: '100 Mbps' -> 100."""
    value = clean_value(value)
    if value is None:
        return None
    if isinstance(value, (int, float)):
        speed = _plausible(value)
    else:
        match = _INTEGER_RE.search(str(value))
        speed = _plausible(float(match.group(1))) if match else None
    return None if speed is None else int(speed)


def normalize_record(
    raw: Mapping[str, Any],
    header_map: Mapping[str, str],
    audit_id: Optional[str] = None,
    index: int = 0,
) -> NormalizedRecord:
    """Build a NormalizedRecord from one raw spreadsheet row.

    Args:
        raw: Row values keyed by header
        header_map: Canonical field -> header, from build_header_map()
        audit_id: Audit the sheet belongs to (from the job payload)
        index: Zero-based data row index, used for the default usuario_id

    Returns:
        NormalizedRecord; missing or unparseable fields are None
    """

    def cell(field: str) -> Any:
        header = header_map.get(field)
        return raw.get(header) if header else None

    values: dict[str, Any] = {field: to_text(cell(field)) for field in TEXT_FIELDS}
    values.update(
        audit_id=to_text(audit_id),
        usuario_id=to_text(cell("usuario_id")) or f"user_{index + 1}",
        atencion=map_label(cell("atencion"), "atencion"),
        cpu_brand=map_label(cell("cpu_brand"), "cpu_brand"),
        cpu_speed_ghz=normalize_cpu_speed(cell("cpu_speed_ghz")),
        ram_gb=normalize_ram(cell("ram_gb")),
        disk_type=map_label(cell("disk_type"), "disk_type"),
        disk_capacity_gb=normalize_disk_capacity(cell("disk_capacity_gb")),
        os_name=map_label(cell("os_name"), "os_name"),
        browser_name=map_label(cell("browser_name"), "browser_name"),
        connection_type=map_label(cell("connection_type"), "connection_type"),
        speed_download_mbps=normalize_speed(cell("speed_download_mbps")),
        speed_upload_mbps=normalize_speed(cell("speed_upload_mbps")),
    )
    return NormalizedRecord(**values)
