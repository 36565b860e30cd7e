"""
Unit tests for MappingService.

Run: pytest tests/unit/test_mapping_service.py -v
"""

import pytest

from services import mapping_suggestion_service
from services.mapping_service import MappingService
from services.generator_service import source_by_target
from services.mapping_suggestion_service import MappingSuggestionService
from models.mapping import FieldMappingEntry, MappingOrigin
from models.session import SessionStatus
from exceptions import (
    SessionNotFoundError,
    MarketplaceNotFoundError,
    DuplicateSourceColumnError,
    InvalidStatusTransitionError,
    DatabaseError,
)

from tests.factories import SessionFactory, MappingFactory, FieldFactory


class FailingMatcher:
    def match(self, columns, fields, marketplace_name):
        raise TimeoutError("suggestion timed out")


@pytest.fixture
def mapped_session(mock_supabase, marketplace_with_fields) -> dict:
    session = SessionFactory.create_mapped(
        marketplace_with_fields["id"],
        columns=["Product Name", "Cost", "Code"],
    )
    mock_supabase.set_table_data("upload_sessions", [session])
    return session


class TestSave:
    """Tests for MappingService.save()"""

    def test_replaces_existing_mappings(self, mock_db, mock_supabase, mapped_session):
        # Arrange
        mock_supabase.set_table_data("field_mappings", [
            MappingFactory.create(mapped_session["id"], "Code", "SKU"),
        ])
        service = MappingService()

        # Act
        saved = service.save(mapped_session["id"], [
            FieldMappingEntry(user_column="Product Name", marketplace_field_name="Title"),
            FieldMappingEntry(user_column="Cost", marketplace_field_name="Price"),
        ])

        # Assert
        assert [(m.user_column, m.marketplace_field_name) for m in saved] == [
            ("Product Name", "Title"),
            ("Cost", "Price"),
        ]
        assert len(mock_supabase.get_table_data("field_mappings")) == 2

    def test_unmapped_entries_not_stored(self, mock_db, mock_supabase, mapped_session):
        service = MappingService()

        saved = service.save(mapped_session["id"], [
            FieldMappingEntry(user_column="Product Name", marketplace_field_name="Title"),
            FieldMappingEntry(user_column="Cost", marketplace_field_name=None),
        ])

        assert [m.user_column for m in saved] == ["Product Name"]

    def test_resolves_field_id_by_name(self, mock_db, mock_supabase, mapped_session):
        title_id = next(
            f["id"] for f in mock_supabase.get_table_data("marketplace_fields")
            if f["field_name"] == "Title"
        )
        service = MappingService()

        saved = service.save(mapped_session["id"], [
            FieldMappingEntry(user_column="Product Name", marketplace_field_name="Title"),
        ])

        assert saved[0].marketplace_field_id == title_id

    def test_provenance_and_confidence(self, mock_db, mock_supabase, mapped_session):
        """Manual entries never keep a confidence; suggested ones do."""
        service = MappingService()

        saved = service.save(mapped_session["id"], [
            FieldMappingEntry(user_column="Product Name", marketplace_field_name="Title",
                              origin=MappingOrigin.SUGGESTED, confidence=0.9),
            FieldMappingEntry(user_column="Cost", marketplace_field_name="Price",
                              origin=MappingOrigin.MANUAL, confidence=0.5),
        ])

        assert (saved[0].origin, saved[0].confidence) == (MappingOrigin.SUGGESTED, 0.9)
        assert (saved[1].origin, saved[1].confidence) == (MappingOrigin.MANUAL, None)

    def test_moves_uploaded_session_to_mapped(self, mock_db, mock_supabase):
        session = SessionFactory.create(status="uploaded", columns=["A"])
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        service.save(session["id"], [FieldMappingEntry(user_column="A", marketplace_field_name="Title")])

        assert mock_supabase.get_table_data("upload_sessions")[0]["status"] == "mapped"

    def test_duplicate_source_column_rejected(self, mock_db, mock_supabase, mapped_session):
        # Arrange
        existing = MappingFactory.create(mapped_session["id"], "Code", "SKU")
        mock_supabase.set_table_data("field_mappings", [existing])
        service = MappingService()

        # Act
        with pytest.raises(DuplicateSourceColumnError) as exc_info:
            service.save(mapped_session["id"], [
                FieldMappingEntry(user_column="Cost", marketplace_field_name="Price"),
                FieldMappingEntry(user_column="Cost", marketplace_field_name="Title"),
            ])

        # Assert
        assert exc_info.value.status_code == 422
        assert exc_info.value.details["columns"] == ["Cost"]
        assert mock_supabase.get_table_data("field_mappings") == [existing]

    def test_two_columns_may_share_a_target(self, mock_db, mock_supabase, mapped_session):
        service = MappingService()

        saved = service.save(mapped_session["id"], [
            FieldMappingEntry(user_column="Product Name", marketplace_field_name="Title"),
            FieldMappingEntry(user_column="Code", marketplace_field_name="Title"),
        ])

        assert len(saved) == 2

    def test_save_order_kept_by_position(self, mock_db, mock_supabase, mapped_session):
        """Rows of one save share created_at; position keeps their order."""
        # Arrange
        service = MappingService()
        service.save(mapped_session["id"], [
            FieldMappingEntry(user_column="Product Name", marketplace_field_name="Title"),
            FieldMappingEntry(user_column="Code", marketplace_field_name="Title"),
        ])
        stored = mock_supabase.get_table_data("field_mappings")
        mock_supabase.set_table_data("field_mappings", list(reversed(stored)))

        # Act
        mappings = service.get(mapped_session["id"])

        # Assert
        assert len({m["created_at"] for m in stored}) == 1
        assert [m.user_column for m in mappings] == ["Product Name", "Code"]
        assert [m.position for m in mappings] == [0, 1]
        assert source_by_target(mappings) == {"Title": "Code"}

    def test_field_id_resolved_in_session_category(self, mock_db, mock_supabase, marketplace_with_fields):
        # Arrange
        electronics_title = FieldFactory.create(
            marketplace_with_fields["id"], "Title", field_order=0, category="Electronics"
        )
        mock_supabase.set_table_data(
            "marketplace_fields",
            [electronics_title] + mock_supabase.get_table_data("marketplace_fields")
        )
        session = SessionFactory.create_mapped(
            marketplace_with_fields["id"], category="Electronics", columns=["Name"]
        )
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        # Act
        saved = service.save(session["id"], [
            FieldMappingEntry(user_column="Name", marketplace_field_name="Title"),
        ])

        # Assert
        assert saved[0].marketplace_field_id == electronics_title["id"]

    def test_generating_session_rejected(self, mock_db, mock_supabase, marketplace_with_fields):
        session = SessionFactory.create(marketplace_id=marketplace_with_fields["id"], status="generating")
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        with pytest.raises(InvalidStatusTransitionError):
            service.save(session["id"], [])

    def test_unknown_session_not_found(self, mock_db):
        service = MappingService()

        with pytest.raises(SessionNotFoundError):
            service.save("missing", [])

    def test_failed_insert_leaves_no_mappings(self, mock_db, mock_supabase, mapped_session):
        """Delete and insert are separate writes: a failed insert loses the old set."""
        # Arrange
        mock_supabase.set_table_data("field_mappings", [
            MappingFactory.create(mapped_session["id"], "Code", "SKU"),
        ])
        mock_supabase.fail_on("field_mappings", "insert")
        service = MappingService()

        # Act
        with pytest.raises(DatabaseError):
            service.save(mapped_session["id"], [
                FieldMappingEntry(user_column="Cost", marketplace_field_name="Price"),
            ])

        # Assert
        assert mock_supabase.get_table_data("field_mappings") == []


class TestAssignMarketplace:
    """Tests for MappingService.assign_marketplace()"""

    def test_stores_suggestions_and_maps_session(self, mock_db, mock_supabase, marketplace_with_fields):
        # Arrange
        session = SessionFactory.create(status="uploaded", columns=["title", "Cost", "sku"])
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        # Act
        updated, suggestions = service.assign_marketplace(session["id"], marketplace_with_fields["id"])

        # Assert
        assert updated.status == SessionStatus.MAPPED
        assert updated.marketplace_id == marketplace_with_fields["id"]
        assert [s.marketplace_field for s in suggestions] == ["Title", None, "SKU"]

        stored = mock_supabase.get_table_data("field_mappings")
        assert [(m["user_column"], m["marketplace_field_name"]) for m in stored] == [
            ("title", "Title"),
            ("sku", "SKU"),
        ]
        assert all(m["origin"] == "suggested" for m in stored)
        assert all(m["confidence"] == 1.0 for m in stored)
        assert all(m["marketplace_field_id"] for m in stored)

    def test_suggestion_failure_still_maps(self, mock_db, mock_supabase, marketplace_with_fields):
        """A failing matcher means no mappings, not a failed assignment."""
        # Arrange
        mapping_suggestion_service._suggestion_service = MappingSuggestionService(matcher=FailingMatcher())
        session = SessionFactory.create(status="uploaded", columns=["title", "Cost"])
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        # Act
        updated, suggestions = service.assign_marketplace(session["id"], marketplace_with_fields["id"])

        # Assert
        assert updated.status == SessionStatus.MAPPED
        assert [(s.marketplace_field, s.confidence) for s in suggestions] == [(None, 0.0), (None, 0.0)]
        assert mock_supabase.get_table_data("field_mappings") == []

    def test_category_scopes_suggestions(self, mock_db, mock_supabase, marketplace_with_fields):
        mock_supabase.set_table_data(
            "marketplace_fields",
            mock_supabase.get_table_data("marketplace_fields")
            + [FieldFactory.create(marketplace_with_fields["id"], "Voltage", field_order=0, category="Electronics")]
        )
        session = SessionFactory.create(status="uploaded", columns=["voltage", "title"])
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        updated, suggestions = service.assign_marketplace(
            session["id"], marketplace_with_fields["id"], category="Electronics"
        )

        assert updated.category == "Electronics"
        assert [s.marketplace_field for s in suggestions] == ["Voltage", None]

    def test_unknown_marketplace(self, mock_db, mock_supabase):
        session = SessionFactory.create(status="uploaded", columns=["A"])
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        with pytest.raises(MarketplaceNotFoundError):
            service.assign_marketplace(session["id"], "missing")

    def test_suggest_does_not_persist(self, mock_db, mock_supabase, marketplace_with_fields):
        session = SessionFactory.create(status="uploaded", columns=["price"])
        mock_supabase.set_table_data("upload_sessions", [session])
        service = MappingService()

        suggestions = service.suggest(session["id"], marketplace_with_fields["id"])

        assert suggestions[0].marketplace_field == "Price"
        assert mock_supabase.get_table_data("field_mappings") == []
        assert mock_supabase.get_table_data("upload_sessions")[0]["status"] == "uploaded"
