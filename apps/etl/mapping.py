"""
Header Mapping - Spreadsheet Columns to Canonical Fields

Providers send inventory sheets with free-form headers ("Memoria RAM",
"RAM (GB)", "memory"...). FIELD_PATTERNS lists, per canonical field, the
regular expressions recognised for it.

Evaluation order is the tuple order: for each field, each pattern is tried
against the headers in column order and the first hit claims that header.
Specific fields come before general ones (os_version before os_name,
isp_name before proveedor, atencion before sitio) so a claimed header cannot
be reused. Adding a synonym is a data change only.
"""

import re
from typing import Iterable

FIELD_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("usuario_id", (r"usuario", r"user.*id", r"id.*usuario", r"empleado", r"employee")),
    ("isp_name", (r"\bisp\b", r"internet.*provider", r"proveedor.*internet")),
    ("proveedor", (r"proveedor", r"empresa", r"company", r"vendor")),
    ("atencion", (r"atenci[oó]n", r"modalidad", r"home.*office", r"work.*mode")),
    ("sitio", (r"sitio", r"\bsite\b", r"centro", r"location", r"sede")),
    ("cpu_brand", (r"cpu.*(brand|marca)", r"marca.*(cpu|procesador)", r"procesador.*marca")),
    (
        "cpu_speed_ghz",
        (r"cpu.*(speed|velocidad)", r"velocidad.*(cpu|procesador)", r"ghz", r"frecuencia", r"frequency"),
    ),
    (
        "cpu_model",
        (r"cpu.*(model|modelo)", r"modelo.*(cpu|procesador)", r"procesador.*modelo", r"^(cpu|procesador|processor)$"),
    ),
    ("ram_gb", (r"\bram\b", r"memoria", r"memory")),
    (
        "disk_type",
        (r"(disk|disco).*(type|tipo)", r"tipo.*(disco|almacenamiento)", r"storage.*type"),
    ),
    (
        "disk_capacity_gb",
        (
            r"(disk|disco).*(capacity|capacidad|size)",
            r"capacidad.*disco",
            r"storage.*(size|capacity)",
            r"almacenamiento",
        ),
    ),
    (
        "os_version",
        (
            r"\b(os|so)\b.*versi[oó]n",
            r"versi[oó]n.*\b(os|so)\b",
            r"sistema.*operativo.*versi[oó]n",
            r"versi[oó]n.*sistema",
        ),
    ),
    ("os_name", (r"^(os|so)$", r"\bos\b", r"sistema.*operativo", r"operating.*system")),
    ("browser_version", (r"(browser|navegador).*versi[oó]n", r"versi[oó]n.*(browser|navegador)")),
    ("browser_name", (r"browser", r"navegador")),
    ("antivirus_brand", (r"antivirus.*(brand|marca)", r"marca.*antivirus", r"^antivirus$")),
    ("antivirus_model", (r"antivirus.*(model|modelo)", r"modelo.*antivirus")),
    (
        "headset_brand",
        (r"(headset|diadema|auricular).*(brand|marca)", r"marca.*(headset|diadema|auricular)", r"^(headset|diadema)$"),
    ),
    (
        "headset_model",
        (r"(headset|diadema|auricular).*(model|modelo)", r"modelo.*(headset|diadema|auricular)"),
    ),
    (
        "connection_type",
        (r"(connection|conexi[oó]n).*(type|tipo)", r"tipo.*conexi[oó]n", r"^(conexi[oó]n|connection)$"),
    ),
    ("speed_download_mbps", (r"download", r"bajada", r"descarga", r"down.*speed")),
    ("speed_upload_mbps", (r"upload", r"subida", r"\bcarga\b", r"up.*speed")),
)

_COMPILED = tuple(
    (field, tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns))
    for field, patterns in FIELD_PATTERNS
)


def build_header_map(headers: Iterable[str]) -> dict[str, str]:
    """Map canonical field names to the header that supplies them.

    Args:
        headers: Header keys in column order (already lower-cased/trimmed)

    Returns:
        Dictionary canonical_field -> header. Fields with no matching header
        are absent.
    """
    ordered = [h for h in headers if h]
    claimed: set[str] = set()
    mapping: dict[str, str] = {}

    for field, patterns in _COMPILED:
        match = _first_match(patterns, ordered, claimed)
        if match is not None:
            mapping[field] = match
            claimed.add(match)

    return mapping


def _first_match(patterns: tuple[re.Pattern, ...], headers: list[str], claimed: set[str]) -> str | None:
    for pattern in patterns:
        for header in headers:
            if header not in claimed and pattern.search(header):
                return header
    return None
