import pytest

from apps.etl.parser import parse_spreadsheet, rows_to_records
from utils.errors import ParsingError, UnrecoverableJobError


class TestRowsToRecords:
    def test_first_non_empty_row_is_header(self):
        sheet = rows_to_records(
            [
                (None, None),
                ("  Usuario ", "Memoria RAM"),
                ("U1", "16 GB"),
            ]
        )

        assert sheet.headers == ["usuario", "memoria ram"]
        assert sheet.header_row == 2
        assert sheet.records == [{"usuario": "U1", "memoria ram": "16 GB"}]

    def test_blank_rows_and_cells_are_skipped(self):
        sheet = rows_to_records(
            [
                ("Usuario", "RAM"),
                ("U1", None),
                (None, "   "),
                ("U2", 8),
            ]
        )

        assert sheet.records == [{"usuario": "U1"}, {"usuario": "U2", "ram": 8}]

    def test_duplicate_header_keeps_first_column(self):
        sheet = rows_to_records([("RAM", "ram", "Disco"), ("16", "32", "SSD")])

        assert sheet.headers == ["ram", "disco"]
        assert sheet.records == [{"ram": "16", "disco": "SSD"}]

    def test_no_header_row(self):
        with pytest.raises(ParsingError):
            rows_to_records([(None,), ("",)])


class TestParseSpreadsheet:
    def test_workbook(self, write_workbook):
        path = write_workbook([[], ["Usuario", "Memoria RAM"], ["U1", "16GB"], ["U2", 8]])

        sheet = parse_spreadsheet(path)

        assert sheet.headers == ["usuario", "memoria ram"]
        assert [r["usuario"] for r in sheet.records] == ["U1", "U2"]
        assert sheet.records[1]["memoria ram"] == 8

    def test_semicolon_csv(self, tmp_path):
        path = tmp_path / "inventory.csv"
        path.write_text("Usuario;Memoria RAM\nU1;16 GB\n\nU2;8GB\n", encoding="utf-8")

        sheet = parse_spreadsheet(path)

        assert sheet.headers == ["usuario", "memoria ram"]
        assert sheet.records == [
            {"usuario": "U1", "memoria ram": "16 GB"},
            {"usuario": "U2", "memoria ram": "8GB"},
        ]

    def test_quoted_newline_in_csv_field(self, tmp_path):
        path = tmp_path / "inventory.csv"
        path.write_text('Usuario,Observaciones\nU1,"linea uno\nlinea dos"\nU2,ok\n', encoding="utf-8")

        sheet = parse_spreadsheet(path)

        assert [r["usuario"] for r in sheet.records] == ["U1", "U2"]
        assert sheet.records[0]["observaciones"] == "linea uno\nlinea dos"

    def test_cp1252_csv(self, tmp_path):
        path = tmp_path / "legacy.csv"
        path.write_bytes("Usuario,Atención\nU1,Home Office\n".encode("cp1252"))

        sheet = parse_spreadsheet(path)

        assert sheet.headers == ["usuario", "atención"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParsingError, match="not found"):
            parse_spreadsheet(tmp_path / "nope.xlsx")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "inventory.pdf"
        path.write_bytes(b"%PDF-1.4")

        with pytest.raises(ParsingError, match="Unsupported"):
            parse_spreadsheet(path)

    def test_corrupt_workbook(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"this is not a zip archive")

        with pytest.raises(ParsingError, match="Unreadable"):
            parse_spreadsheet(path)

    def test_empty_workbook_is_unrecoverable(self, write_workbook):
        path = write_workbook([])

        with pytest.raises(UnrecoverableJobError):
            parse_spreadsheet(path)
