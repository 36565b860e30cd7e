"""
Marketplace service: target schemas and their fields.

Fields are created in bulk from an uploaded template file and can be
replaced per category. A null category and the label "Default" are the
same group everywhere (listing, deleting, extracting).
"""

from typing import Optional
import structlog

from config import get_supabase_client, settings
from models.marketplace import (
    DEFAULT_CATEGORY,
    is_default_category,
    normalize_category,
    MarketplaceCreate,
    MarketplaceResponse,
    MarketplaceFieldResponse,
    MarketplaceFieldUpdate,
    TemplateExtractionResponse,
    FieldsSummaryItem,
)
from parsers.tabular_parser import SourceColumn, parse_file, validate_upload
from services.storage_service import get_storage_service, timestamped_path
from exceptions import (
    MarketplaceNotFoundError,
    MarketplaceNameExistsError,
    FieldUpdateError,
    DatabaseError,
)

logger = structlog.get_logger(__name__)


def order_fields(fields: list[MarketplaceFieldResponse]) -> list[MarketplaceFieldResponse]:
    """
    Output column order: field_order ascending, unordered fields last.

    sorted() is stable, so ties keep their original (insertion) order.
    """
    return sorted(
        fields,
        key=lambda f: (f.field_order is None, f.field_order if f.field_order is not None else 0)
    )


def _scope_query(query, category: Optional[str]):
    """Restrict a query to one category scope ("Default" = null)."""
    if is_default_category(category):
        return query.is_("category", "null")
    return query.eq("category", category.strip())


class MarketplaceService:
    """
    Marketplace business logic.

    Handles marketplaces, their field sets and template extraction.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "marketplaces"
        self.fields_table = "marketplace_fields"

    # ===================
    # MARKETPLACES
    # ===================

    def get_all(self) -> list[MarketplaceResponse]:
        """All marketplaces ordered by display name."""
        logger.info("getting_marketplaces")

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .order("display_name")
                .execute()
            )
            return [MarketplaceResponse(**row) for row in result.data]

        except Exception as e:
            logger.error("get_marketplaces_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, marketplace_id: str) -> MarketplaceResponse:
        """
        Get a single marketplace by ID.

        Raises:
            MarketplaceNotFoundError: If marketplace doesn't exist
        """
        logger.debug("getting_marketplace", marketplace_id=marketplace_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", marketplace_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "get_marketplace_failed",
                marketplace_id=marketplace_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            raise MarketplaceNotFoundError(marketplace_id)

        return MarketplaceResponse(**result.data[0])

    def create(self, data: MarketplaceCreate) -> MarketplaceResponse:
        """
        Create a new marketplace.

        Raises:
            MarketplaceNameExistsError: If the normalized name is taken
        """
        logger.info("creating_marketplace", name=data.name)

        try:
            existing = (
                self.db.table(self.table)
                .select("id")
                .eq("name", data.name)
                .execute()
            )
        except Exception as e:
            logger.error("check_marketplace_name_failed", name=data.name, error=str(e))
            raise DatabaseError("select", str(e))

        if existing.data:
            raise MarketplaceNameExistsError(data.name)

        try:
            result = (
                self.db.table(self.table)
                .insert({"name": data.name, "display_name": data.display_name})
                .execute()
            )
            marketplace = MarketplaceResponse(**result.data[0])

        except Exception as e:
            logger.error("create_marketplace_failed", name=data.name, error=str(e))
            raise DatabaseError("insert", str(e))

        logger.info(
            "marketplace_created",
            marketplace_id=marketplace.id,
            name=marketplace.name
        )
        return marketplace

    def delete(self, marketplace_id: str) -> bool:
        """
        Delete a marketplace together with all of its fields.

        Raises:
            MarketplaceNotFoundError: If marketplace doesn't exist
        """
        logger.info("deleting_marketplace", marketplace_id=marketplace_id)

        self.get_by_id(marketplace_id)

        try:
            self.db.table(self.fields_table).delete().eq(
                "marketplace_id", marketplace_id
            ).execute()
            self.db.table(self.table).delete().eq("id", marketplace_id).execute()

        except Exception as e:
            logger.error(
                "delete_marketplace_failed",
                marketplace_id=marketplace_id,
                error=str(e)
            )
            raise DatabaseError("delete", str(e))

        logger.info("marketplace_deleted", marketplace_id=marketplace_id)
        return True

    # ===================
    # FIELDS
    # ===================

    def list_fields(
        self,
        marketplace_id: str,
        category: Optional[str] = None
    ) -> list[MarketplaceFieldResponse]:
        """
        Fields of a marketplace in output order.

        Args:
            marketplace_id: Marketplace UUID
            category: Only this category scope ("Default" = no category).
                      None returns every field.
        """
        logger.debug(
            "listing_marketplace_fields",
            marketplace_id=marketplace_id,
            category=category
        )

        try:
            query = (
                self.db.table(self.fields_table)
                .select("*")
                .eq("marketplace_id", marketplace_id)
            )
            if category is not None:
                query = _scope_query(query, category)

            result = query.order("field_order").execute()

        except Exception as e:
            logger.error(
                "list_marketplace_fields_failed",
                marketplace_id=marketplace_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        return order_fields([MarketplaceFieldResponse(**row) for row in result.data])

    def extract_fields_from_template(
        self,
        marketplace_id: str,
        columns: list[SourceColumn],
        category: Optional[str] = None
    ) -> list[MarketplaceFieldResponse]:
        """
        Replace a field set with one field per parsed template column.

        Without a category every field of the marketplace is replaced.
        With a category only that scope is replaced; "Default" replaces
        the fields that have no category.

        Returns:
            The inserted fields, in column order
        """
        stored_category = normalize_category(category)

        logger.info(
            "extracting_template_fields",
            marketplace_id=marketplace_id,
            category=category,
            column_count=len(columns)
        )

        try:
            delete_query = (
                self.db.table(self.fields_table)
                .delete()
                .eq("marketplace_id", marketplace_id)
            )
            if category is not None:
                delete_query = _scope_query(delete_query, category)
            delete_query.execute()

        except Exception as e:
            logger.error(
                "delete_template_fields_failed",
                marketplace_id=marketplace_id,
                error=str(e)
            )
            raise DatabaseError("delete", str(e))

        field_rows = [
            {
                "marketplace_id": marketplace_id,
                "field_name": column.name,
                "display_name": column.name,
                "is_required": False,
                "sample_values": list(column.sample_values),
                "field_order": idx,
                "category": stored_category,
            }
            for idx, column in enumerate(columns)
        ]

        if not field_rows:
            return []

        try:
            result = self.db.table(self.fields_table).insert(field_rows).execute()
        except Exception as e:
            logger.error(
                "insert_template_fields_failed",
                marketplace_id=marketplace_id,
                error=str(e)
            )
            raise DatabaseError("insert", str(e))

        fields = [MarketplaceFieldResponse(**row) for row in result.data]

        logger.info(
            "template_fields_extracted",
            marketplace_id=marketplace_id,
            category=stored_category or DEFAULT_CATEGORY,
            field_count=len(fields)
        )
        return fields

    def upload_template(
        self,
        marketplace_id: str,
        content: bytes,
        filename: str,
        category: Optional[str] = None
    ) -> TemplateExtractionResponse:
        """
        Store a template file and rebuild the field set from its header.

        Raises:
            MarketplaceNotFoundError: Unknown marketplace
            InvalidFileTypeError / FileTooLargeError: Rejected before parsing
            FileParseError / NoColumnsError: Template unreadable or empty
        """
        self.get_by_id(marketplace_id)

        validate_upload(filename, len(content), settings.max_upload_size_bytes)
        parsed = parse_file(content, filename, max_rows=settings.max_rows_stored)

        storage_path = get_storage_service().upload(
            settings.templates_bucket,
            timestamped_path(filename, prefix=marketplace_id),
            content,
            upsert=True
        )

        try:
            self.db.table(self.table).update(
                {"template_file_path": storage_path}
            ).eq("id", marketplace_id).execute()
        except Exception as e:
            logger.error(
                "update_template_path_failed",
                marketplace_id=marketplace_id,
                error=str(e)
            )
            raise DatabaseError("update", str(e))

        fields = self.extract_fields_from_template(
            marketplace_id,
            parsed.columns,
            category=category
        )

        return TemplateExtractionResponse(
            fields=fields,
            column_count=len(parsed.columns)
        )

    def update_fields(
        self,
        marketplace_id: str,
        updates: list[MarketplaceFieldUpdate]
    ) -> int:
        """
        Apply per-field partial updates.

        Each update is independent: a failure is recorded and the
        remaining updates still run.

        Returns:
            Number of fields updated

        Raises:
            FieldUpdateError: After all updates ran, if any failed
        """
        logger.info(
            "updating_marketplace_fields",
            marketplace_id=marketplace_id,
            count=len(updates)
        )

        updated = 0
        failed: list[dict] = []

        for update in updates:
            update_data = {"is_required": update.is_required}
            if update.description is not None:
                update_data["description"] = update.description
            if update.display_name is not None:
                update_data["display_name"] = update.display_name
            if update.field_order is not None:
                update_data["field_order"] = update.field_order

            try:
                result = (
                    self.db.table(self.fields_table)
                    .update(update_data)
                    .eq("id", update.id)
                    .eq("marketplace_id", marketplace_id)
                    .execute()
                )
            except Exception as e:
                logger.error(
                    "update_marketplace_field_failed",
                    field_id=update.id,
                    error=str(e)
                )
                failed.append({"id": update.id, "reason": "update_failed"})
                continue

            if not result.data:
                logger.warning("marketplace_field_not_found", field_id=update.id)
                failed.append({"id": update.id, "reason": "not_found"})
                continue

            updated += 1

        logger.info(
            "marketplace_fields_updated",
            marketplace_id=marketplace_id,
            updated=updated,
            failed=len(failed)
        )

        if failed:
            raise FieldUpdateError(failed)

        return updated

    def delete_fields(
        self,
        marketplace_id: str,
        category: Optional[str] = None
    ) -> bool:
        """
        Delete one category's fields, or the whole marketplace.

        With a category only matching fields go ("Default" = fields with
        no category). Without one the marketplace itself is deleted,
        taking all of its fields along.
        """
        if category is None:
            return self.delete(marketplace_id)

        logger.info(
            "deleting_marketplace_fields",
            marketplace_id=marketplace_id,
            category=category
        )

        try:
            query = (
                self.db.table(self.fields_table)
                .delete()
                .eq("marketplace_id", marketplace_id)
            )
            _scope_query(query, category).execute()

        except Exception as e:
            logger.error(
                "delete_marketplace_fields_failed",
                marketplace_id=marketplace_id,
                category=category,
                error=str(e)
            )
            raise DatabaseError("delete", str(e))

        return True

    def fields_summary(self) -> dict[str, FieldsSummaryItem]:
        """
        Field count and distinct categories for every marketplace.

        Categories are listed in first-seen order; uncategorized fields
        count but add no category.
        """
        try:
            result = (
                self.db.table(self.fields_table)
                .select("marketplace_id, category")
                .execute()
            )
        except Exception as e:
            logger.error("fields_summary_failed", error=str(e))
            raise DatabaseError("select", str(e))

        summary: dict[str, FieldsSummaryItem] = {}
        for row in result.data:
            item = summary.setdefault(row["marketplace_id"], FieldsSummaryItem())
            item.count += 1
            category = row.get("category")
            if category and category not in item.categories:
                item.categories.append(category)

        return summary


# Singleton instance for convenience
_marketplace_service: Optional[MarketplaceService] = None


def get_marketplace_service() -> MarketplaceService:
    """Get or create MarketplaceService instance."""
    global _marketplace_service
    if _marketplace_service is None:
        _marketplace_service = MarketplaceService()
    return _marketplace_service
