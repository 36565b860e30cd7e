"""
Unit tests for the output generator.

Run: pytest tests/unit/test_generator_service.py -v
"""

import pytest
from io import BytesIO

from openpyxl import load_workbook

from services.generator_service import (
    GeneratorService,
    project_rows,
    source_by_target,
    serialize_csv,
    serialize_xlsx,
    generate_output,
    output_path,
)
from parsers.tabular_parser import parse_file
from models.marketplace import MarketplaceFieldResponse
from models.mapping import FieldMappingResponse
from models.session import SessionRowResponse, OutputFormat
from exceptions import (
    GenerationError,
    MarketplaceNotAssignedError,
    InvalidStatusTransitionError,
    SessionNotFoundError,
    ValidationError,
)

from tests.factories import SessionFactory, RowFactory, MappingFactory, FieldFactory


def _field(name, order, category=None) -> MarketplaceFieldResponse:
    return MarketplaceFieldResponse(
        id=f"f-{name}", marketplace_id="m1", field_name=name, field_order=order, category=category
    )


def _mapping(source, target, id="x") -> FieldMappingResponse:
    return FieldMappingResponse(id=id, session_id="s1", user_column=source, marketplace_field_name=target)


def _row(index, data, edited=None) -> SessionRowResponse:
    return SessionRowResponse(id=f"r{index}", session_id="s1", row_index=index, data=data, edited_data=edited)


class TestProjectRows:
    """Tests for project_rows()"""

    def test_projection_example(self):
        """Mapped columns land under their target fields in field order."""
        # Arrange
        fields = [_field("Title", 0), _field("Price", 1)]
        mappings = [_mapping("Product Name", "Title"), _mapping("Cost", "Price")]
        rows = [_row(0, {"Product Name": "Widget", "Cost": "9.99"})]

        # Act
        header, table = project_rows(rows, mappings, fields)

        # Assert
        assert header == ["Title", "Price"]
        assert table == [["Widget", "9.99"]]

    def test_unmapped_field_is_empty_column(self):
        fields = [_field("Title", 0), _field("Brand", 1)]
        rows = [_row(0, {"Name": "A"}), _row(1, {"Name": "B"})]

        header, table = project_rows(rows, [_mapping("Name", "Title")], fields)

        assert [r[1] for r in table] == ["", ""]

    def test_extra_source_columns_dropped(self):
        header, table = project_rows(
            [_row(0, {"Name": "A", "Internal": "secret"})],
            [_mapping("Name", "Title")],
            [_field("Title", 0)],
        )

        assert header == ["Title"]
        assert table == [["A"]]

    def test_uses_effective_values(self):
        header, table = project_rows(
            [_row(0, {"Name": "Old"}, edited={"Name": "New"})],
            [_mapping("Name", "Title")],
            [_field("Title", 0)],
        )

        assert table == [["New"]]

    def test_missing_source_value_is_empty(self):
        header, table = project_rows(
            [_row(0, {"Other": "x"})],
            [_mapping("Name", "Title")],
            [_field("Title", 0)],
        )

        assert table == [[""]]

    def test_rows_in_row_index_order(self):
        header, table = project_rows(
            [_row(1, {"N": "b"}), _row(0, {"N": "a"})],
            [_mapping("N", "Title")],
            [_field("Title", 0)],
        )

        assert table == [["a"], ["b"]]

    def test_field_order_with_unordered_last(self):
        fields = [_field("Notes", None), _field("Price", 1), _field("Title", 0)]

        header, _ = project_rows([], [], fields)

        assert header == ["Title", "Price", "Notes"]

    def test_duplicate_target_last_mapping_wins(self):
        """Two columns on one field: the later mapping supplies the value."""
        fields = [_field("Title", 0)]
        mappings = [_mapping("Name", "Title", id="1"), _mapping("Label", "Title", id="2")]

        header, table = project_rows([_row(0, {"Name": "first", "Label": "second"})], mappings, fields)

        assert table == [["second"]]

    def test_source_by_target_skips_empty_targets(self):
        lookup = source_by_target([_mapping("A", None), _mapping("B", "Title")])

        assert lookup == {"Title": "B"}


class TestSerializers:
    """Tests for serialize_csv() and serialize_xlsx()"""

    def test_csv_uses_newlines_and_minimal_quoting(self):
        content = serialize_csv(["Title", "Notes"], [["Widget", "red, large"], ["Gadget", ""]])

        assert content == b'Title,Notes\nWidget,"red, large"\nGadget,\n'

    def test_csv_header_only_when_no_rows(self):
        assert serialize_csv(["Title", "Price"], []) == b"Title,Price\n"

    def test_csv_utf8(self):
        content = serialize_csv(["Título"], [["Café"]])

        assert content.decode("utf-8") == "Título\nCafé\n"

    def test_csv_round_trip_through_parser(self):
        """Generated CSV re-parses to the same header and values."""
        # Arrange
        header = ["SKU", "Title", "Price"]
        rows = [["A1", "Widget", "9.99"], ["A2", "Gadget", "5"]]

        # Act
        parsed = parse_file(serialize_csv(header, rows), "roundtrip.csv")

        # Assert
        assert parsed.column_names == header
        assert [[r[h] for h in header] for r in parsed.rows] == rows

    def test_xlsx_single_sheet_with_text_cells(self):
        content = serialize_xlsx(["Title", "Price"], [["Widget", "9.99"]])

        wb = load_workbook(BytesIO(content))
        assert wb.sheetnames == ["Sheet1"]
        values = [list(r) for r in wb["Sheet1"].iter_rows(values_only=True)]
        assert values == [["Title", "Price"], ["Widget", "9.99"]]

    def test_xlsx_equals_prefixed_values_stay_text(self):
        """Values starting with "=" are stored as text, not formulas."""
        # Arrange
        rows = [["=50% off", "=== SALE ==="], ["plain", "=SUM(A1:A2)"]]

        # Act
        content = serialize_xlsx(["Title", "Notes"], rows)

        # Assert
        cell = load_workbook(BytesIO(content))["Sheet1"]["A2"]
        assert cell.data_type == "s"
        assert cell.value == "=50% off"
        parsed = parse_file(content, "out.xlsx")
        assert [[r["Title"], r["Notes"]] for r in parsed.rows] == rows

    def test_generate_output_picks_format(self):
        fields = [_field("Title", 0)]
        rows = [_row(0, {"N": "a"})]
        mappings = [_mapping("N", "Title")]

        csv_bytes = generate_output(rows, mappings, fields, OutputFormat.CSV)
        xlsx_bytes = generate_output(rows, mappings, fields, OutputFormat.XLSX)

        assert csv_bytes == b"Title\na\n"
        assert xlsx_bytes[:2] == b"PK"


class TestOutputPath:
    def test_path_layout(self):
        path = output_path("s1", "my catalog.xlsx", "mercado_libre", OutputFormat.CSV)

        prefix, name = path.split("/")
        assert prefix == "s1"
        assert name.startswith("my_catalog_mercado_libre_")
        assert name.endswith(".csv")


class TestGenerate:
    """Tests for GeneratorService.generate()"""

    @pytest.fixture
    def ready_session(self, mock_supabase, marketplace_with_fields) -> dict:
        session = SessionFactory.create_mapped(
            marketplace_with_fields["id"],
            original_filename="catalog.csv",
            columns=["Product Name", "Cost"],
        )
        mock_supabase.set_table_data("upload_sessions", [session])
        mock_supabase.set_table_data("session_rows", RowFactory.create_batch(session["id"], [
            {"Product Name": "Widget", "Cost": "9.99"},
            {"Product Name": "Gadget", "Cost": "5"},
        ]))
        mock_supabase.set_table_data("field_mappings", [
            MappingFactory.create(session["id"], "Product Name", "Title"),
            MappingFactory.create(session["id"], "Cost", "Price"),
        ])
        return session

    def test_generates_and_records_file(self, mock_db, mock_supabase, ready_session):
        # Arrange
        service = GeneratorService()

        # Act
        generated = service.generate(ready_session["id"], OutputFormat.CSV)

        # Assert
        assert generated.row_count == 2
        assert generated.output_format == OutputFormat.CSV
        assert generated.file_path.startswith(f"{ready_session['id']}/catalog_amazon_")
        content = mock_supabase.storage.files[("generated", generated.file_path)]
        assert content == b"Title,Price,SKU\nWidget,9.99,\nGadget,5,\n"
        assert mock_supabase.get_table_data("upload_sessions")[0]["status"] == "done"
        assert len(mock_supabase.get_table_data("generated_files")) == 1

    def test_regenerate_keeps_earlier_files(self, mock_db, mock_supabase, ready_session):
        service = GeneratorService()

        service.generate(ready_session["id"], OutputFormat.CSV)
        service.generate(ready_session["id"], OutputFormat.XLSX)

        assert len(mock_supabase.get_table_data("generated_files")) == 2

    def test_storage_failure_sets_error_and_records_nothing(self, mock_db, mock_supabase, ready_session):
        """A failed run leaves status error and no file record."""
        # Arrange
        mock_supabase.storage.failing_buckets.add("generated")
        service = GeneratorService()

        # Act
        with pytest.raises(GenerationError) as exc_info:
            service.generate(ready_session["id"], OutputFormat.CSV)

        # Assert
        assert exc_info.value.status_code == 500
        assert mock_supabase.get_table_data("upload_sessions")[0]["status"] == "error"
        assert mock_supabase.get_table_data("generated_files") == []

    def test_record_failure_sets_error(self, mock_db, mock_supabase, ready_session):
        mock_supabase.fail_on("generated_files", "insert")
        service = GeneratorService()

        with pytest.raises(GenerationError):
            service.generate(ready_session["id"], OutputFormat.XLSX)

        assert mock_supabase.get_table_data("upload_sessions")[0]["status"] == "error"

    def test_failed_error_status_keeps_generation_error(self, mock_db, mock_supabase, ready_session):
        """A failing error-status write does not hide the generation failure."""
        # Arrange
        mock_supabase.storage.failing_buckets.add("generated")
        mock_supabase.fail_on("upload_sessions", "update", call=2)
        service = GeneratorService()

        # Act
        with pytest.raises(GenerationError):
            service.generate(ready_session["id"], OutputFormat.CSV)

        # Assert
        assert mock_supabase.get_table_data("generated_files") == []

    def test_error_session_can_regenerate(self, mock_db, mock_supabase, ready_session):
        sessions = mock_supabase.get_table_data("upload_sessions")
        sessions[0]["status"] = "error"
        mock_supabase.set_table_data("upload_sessions", sessions)
        service = GeneratorService()

        service.generate(ready_session["id"], OutputFormat.CSV)

        assert mock_supabase.get_table_data("upload_sessions")[0]["status"] == "done"

    def test_category_scopes_output_columns(self, mock_db, mock_supabase, ready_session, marketplace_with_fields):
        sessions = mock_supabase.get_table_data("upload_sessions")
        sessions[0]["category"] = "Electronics"
        mock_supabase.set_table_data("upload_sessions", sessions)
        mock_supabase.set_table_data(
            "marketplace_fields",
            mock_supabase.get_table_data("marketplace_fields")
            + [FieldFactory.create(marketplace_with_fields["id"], "Voltage", field_order=0, category="Electronics")]
        )
        service = GeneratorService()

        generated = service.generate(ready_session["id"], OutputFormat.CSV)

        content = mock_supabase.storage.files[("generated", generated.file_path)]
        assert content.split(b"\n")[0] == b"Voltage"

    def test_uploaded_session_cannot_generate(self, mock_db, mock_supabase, marketplace_with_fields):
        session = SessionFactory.create(marketplace_id=marketplace_with_fields["id"], status="uploaded")
        mock_supabase.set_table_data("upload_sessions", [session])
        service = GeneratorService()

        with pytest.raises(InvalidStatusTransitionError):
            service.generate(session["id"], OutputFormat.CSV)

    def test_no_marketplace(self, mock_db, mock_supabase):
        session = SessionFactory.create(status="mapped")
        mock_supabase.set_table_data("upload_sessions", [session])
        service = GeneratorService()

        with pytest.raises(MarketplaceNotAssignedError):
            service.generate(session["id"], OutputFormat.CSV)

    def test_marketplace_without_fields(self, mock_db, mock_supabase, marketplace_with_fields):
        mock_supabase.set_table_data("marketplace_fields", [])
        session = SessionFactory.create_mapped(marketplace_with_fields["id"])
        mock_supabase.set_table_data("upload_sessions", [session])
        service = GeneratorService()

        with pytest.raises(ValidationError) as exc_info:
            service.generate(session["id"], OutputFormat.CSV)

        assert exc_info.value.code == "NO_MARKETPLACE_FIELDS"
        assert mock_supabase.get_table_data("upload_sessions")[0]["status"] == "mapped"

    def test_unknown_session(self, mock_db):
        with pytest.raises(SessionNotFoundError):
            GeneratorService().generate("missing", OutputFormat.CSV)
