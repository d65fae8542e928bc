import math
from datetime import datetime

import orjson
import pytest

from apps.etl.mapping import build_header_map
from apps.etl.normalizers import (
    clean_value,
    map_label,
    normalize_cpu_speed,
    normalize_disk_capacity,
    normalize_ram,
    normalize_record,
    normalize_speed,
    round_half_up,
    to_text,
)
from apps.etl.scoring import score_record
from apps.etl.validation import DEFAULT_RULES, validate_record
from tests.helpers import INVENTORY_HEADERS, inventory_row


class TestScalarNormalizers:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2.4 GHz", 2.4),
            ("2400MHz", 2.4),
            ("2,8", 2.8),
            (3.1, 3.1),
            ("Core i5-8250U @ 1.60GHz", 1.6),
            ("i7 2600 MHz", 2.6),
            ("fast", None),
            (None, None),
        ],
    )
    def test_cpu_speed(self, value, expected):
        assert normalize_cpu_speed(value) == expected

    @pytest.mark.parametrize(
        "value, expected",
        [("16 GB", 16), ("16384 MB", 16), ("DDR4 8GB", 8), ("8", 8), (32, 32), ("n/a", None), ("   ", None)],
    )
    def test_ram(self, value, expected):
        assert normalize_ram(value) == expected

    @pytest.mark.parametrize(
        "value, expected",
        [("1TB", 1024), ("512 GB", 512), ("256000MB", 250), ("SSD 480GB", 480), (256.0, 256), ("", None)],
    )
    def test_disk_capacity(self, value, expected):
        assert normalize_disk_capacity(value) == expected

    @pytest.mark.parametrize("value, expected", [("100 Mbps", 100), ("50.5", 50), (20.9, 20), ("slow", None)])
    def test_speed_takes_first_integer(self, value, expected):
        assert normalize_speed(value) == expected

    def test_zero_is_a_value(self):
        assert normalize_ram(0) == 0
        assert normalize_speed("0 Mbps") == 0

    def test_round_half_up(self):
        assert round_half_up(92.5) == 93
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2

    def test_round_half_up_rejects_non_finite(self):
        with pytest.raises(ValueError):
            round_half_up(math.inf)

    @pytest.mark.parametrize(
        "normalizer",
        [normalize_cpu_speed, normalize_ram, normalize_disk_capacity, normalize_speed],
    )
    @pytest.mark.parametrize("value", ["1" * 400 + " GB", "99999999999999999999 GB", "9" * 5000, 10**30, 1e300])
    def test_out_of_range_is_unparseable(self, normalizer, value):
        assert normalizer(value) is None


class TestLabels:
    @pytest.mark.parametrize(
        "value, field, expected",
        [
            ("Home Office", "atencion", "HO"),
            ("HO", "atencion", "HO"),
            ("On Site", "atencion", "OS"),
            ("Presencial", "atencion", "Presencial"),
            ("Windows 11 Pro", "os_name", "Windows 11"),
            ("Win10", "os_name", "Windows 10"),
            ("Ubuntu 22.04", "os_name", "Linux"),
            ("macOS", "os_name", "macOS"),
            ("SSD NVMe", "disk_type", "SSD"),
            ("Google Chrome", "browser_name", "Chrome"),
            ("Fiber to the home", "connection_type", "Fibra"),
            ("AMD Ryzen", "cpu_brand", "AMD"),
        ],
    )
    def test_map_label(self, value, field, expected):
        assert map_label(value, field) == expected

    def test_empty_label_is_none(self):
        assert map_label("  ", "os_name") is None


class TestCellCleaning:
    def test_clean_value(self):
        assert clean_value(None) is None
        assert clean_value("  ") is None
        assert clean_value(" x ") == "x"
        assert clean_value(math.nan) is None
        assert clean_value(True) is None

    def test_numeric_text_rendering(self):
        assert to_text(1001.0) == "1001"
        assert to_text(10.5) == "10.5"
        assert to_text(7) == "7"


class TestNormalizeRecord:
    HEADER_MAP = {
        "usuario_id": "usuario",
        "ram_gb": "memoria",
        "atencion": "atención",
        "proveedor": "proveedor",
    }

    def test_maps_and_normalizes(self):
        record = normalize_record(
            {"usuario": 1001.0, "memoria": "16384 MB", "atención": "home office", "proveedor": " Acme "},
            self.HEADER_MAP,
            audit_id="AUD-7",
        )

        assert record.usuario_id == "1001"
        assert record.ram_gb == 16
        assert record.atencion == "HO"
        assert record.proveedor == "Acme"
        assert record.audit_id == "AUD-7"
        assert record.disk_type is None

    def test_default_usuario_id_uses_row_number(self):
        record = normalize_record({"memoria": "8GB"}, self.HEADER_MAP, index=2)

        assert record.usuario_id == "user_3"
        assert record.audit_id is None

    def test_unparseable_values_become_none(self):
        record = normalize_record({"memoria": "lots"}, self.HEADER_MAP)

        assert record.ram_gb is None


HOSTILE_CELLS = [
    "1" * 400 + " GB",
    "99999999999999999999 GB",
    "9" * 5000,
    10**30,
    math.inf,
    -math.inf,
    math.nan,
    True,
    False,
    datetime(2024, 1, 5, 8, 30),
    -16,
    -2.5,
    "",
    "@@ -- GHz ??",
]


class TestHostileCells:
    HEADERS = [h.lower() for h in INVENTORY_HEADERS]

    def run_pipeline(self, raw):
        header_map = build_header_map(self.HEADERS)
        record = normalize_record(raw, header_map, audit_id="AUD-1")
        return record, score_record(record, validate_record(record, DEFAULT_RULES))

    @pytest.mark.parametrize("cell", HOSTILE_CELLS, ids=lambda cell: repr(cell)[:24])
    def test_every_column_hostile(self, cell):
        raw = {header: cell for header in self.HEADERS}

        record, scored = self.run_pipeline(raw)
        again, _ = self.run_pipeline(raw)

        assert record == again
        assert 0 <= scored.quality_score <= 100
        orjson.dumps(scored.model_dump(mode="json"))

    @pytest.mark.parametrize("cell", HOSTILE_CELLS, ids=lambda cell: repr(cell)[:24])
    def test_one_hostile_column(self, cell):
        raw = dict(zip(self.HEADERS, inventory_row(**{"Memoria RAM": cell})))

        record, scored = self.run_pipeline(raw)

        assert record.usuario_id == "U001"
        assert record.disk_capacity_gb == 1024
        assert 0 <= scored.quality_score <= 100
