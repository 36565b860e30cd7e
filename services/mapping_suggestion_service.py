"""
Mapping suggestion service.

Proposes, for every column of an uploaded file, the marketplace field it
most likely corresponds to, with a confidence in [0, 1].

Two matchers share one contract:
- ClaudeMatcher asks Claude to label the columns (used when an
  Anthropic API key is configured)
- LexicalMatcher compares normalized header names with rapidfuzz

Whatever goes wrong inside a matcher (timeout, API error, unparseable or
malformed output) the service answers with "no suggestion" for every
column instead of raising.
"""

import json
import re
from typing import Optional, Protocol, Sequence
import structlog

import anthropic
from pydantic import BaseModel, Field
from rapidfuzz import fuzz

from config import settings
from models.mapping import MappingSuggestion
from models.marketplace import MarketplaceFieldResponse
from utils.text_utils import normalize_header

logger = structlog.get_logger(__name__)


class ColumnLike(Protocol):
    name: str
    sample_values: list[str]


class Matcher(Protocol):
    def match(
        self,
        columns: Sequence[ColumnLike],
        fields: Sequence[MarketplaceFieldResponse],
        marketplace_name: str,
    ) -> list[MappingSuggestion]:
        ...


# ===================
# CLAUDE MATCHER
# ===================

class _ClaudeMapping(BaseModel):
    user_column: str
    marketplace_field: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)


class _ClaudeMappingPayload(BaseModel):
    mappings: list[_ClaudeMapping]


class ClaudeMatcher:
    """Label columns with Claude."""

    PROMPT = """You are a data mapping assistant for an e-commerce catalog tool.

User file columns (with sample values):
{columns}

Target marketplace: {marketplace}
Required fields: {required}
Optional fields: {optional}

Map each user column to the most appropriate marketplace field.
Rules:
- Each user column should map to at most one marketplace field
- Each marketplace field should be used at most once
- If no good match exists, set marketplace_field to null
- Confidence: 1.0 = perfect match, 0.0 = no match

Return ONLY a JSON object with this exact structure:
{{
  "mappings": [
    {{ "user_column": "<column name>", "marketplace_field": "<field name or null>", "confidence": <0.0-1.0> }}
  ]
}}"""

    def __init__(self, client: Optional[anthropic.Anthropic] = None):
        self.client = client or anthropic.Anthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.suggestion_timeout_seconds,
            max_retries=1,
        )

    def build_prompt(
        self,
        columns: Sequence[ColumnLike],
        fields: Sequence[MarketplaceFieldResponse],
        marketplace_name: str,
    ) -> str:
        column_lines = "\n".join(
            '- "{}": [{}]'.format(
                col.name,
                ", ".join(f'"{v}"' for v in list(col.sample_values)[:3])
            )
            for col in columns
        )
        required = [f.field_name for f in fields if f.is_required]
        optional = [f.field_name for f in fields if not f.is_required]

        return self.PROMPT.format(
            columns=column_lines,
            marketplace=marketplace_name,
            required=", ".join(required),
            optional=", ".join(optional),
        )

    def match(
        self,
        columns: Sequence[ColumnLike],
        fields: Sequence[MarketplaceFieldResponse],
        marketplace_name: str,
    ) -> list[MappingSuggestion]:
        response = self.client.messages.create(
            model=settings.suggestion_model,
            max_tokens=settings.suggestion_max_tokens,
            messages=[{
                "role": "user",
                "content": self.build_prompt(columns, fields, marketplace_name)
            }]
        )

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )
        logger.debug("claude_suggestion_received", response_length=len(text))

        return self.parse_response(text)

    @staticmethod
    def parse_response(text: str) -> list[MappingSuggestion]:
        """
        Extract the JSON object from Claude's reply.

        Raises:
            ValueError: No JSON object, invalid JSON or wrong shape
        """
        # Handles replies wrapped in markdown code blocks
        json_match = re.search(r"\{[\s\S]*\}", text)
        if not json_match:
            raise ValueError("No JSON found in Claude response")

        payload = _ClaudeMappingPayload.model_validate(json.loads(json_match.group(0)))

        return [
            MappingSuggestion(
                user_column=m.user_column,
                marketplace_field=m.marketplace_field,
                confidence=m.confidence,
            )
            for m in payload.mappings
        ]


# ===================
# LEXICAL MATCHER
# ===================

class LexicalMatcher:
    """
    Deterministic header-name matcher.

    Exact match after normalization scores 1.0. Otherwise the best
    rapidfuzz token-sort ratio against field name or display name,
    scaled to [0, 0.95]. Below THRESHOLD the column stays unmapped.
    Ties go to the earlier field.
    """

    THRESHOLD = 0.6
    MAX_FUZZY_CONFIDENCE = 0.95

    def _score(self, column: str, field: MarketplaceFieldResponse) -> float:
        best = 0.0
        for candidate in (field.field_name, field.display_name):
            target = normalize_header(candidate)
            if not column or not target:
                continue
            if column == target:
                return 1.0
            ratio = fuzz.token_sort_ratio(column, target) / 100.0
            best = max(best, ratio * self.MAX_FUZZY_CONFIDENCE)
        return best

    def match(
        self,
        columns: Sequence[ColumnLike],
        fields: Sequence[MarketplaceFieldResponse],
        marketplace_name: str,
    ) -> list[MappingSuggestion]:
        suggestions = []

        for col in columns:
            normalized = normalize_header(col.name)
            best_field: Optional[str] = None
            best_score = 0.0

            for field in fields:
                score = self._score(normalized, field)
                if score > best_score:
                    best_field = field.field_name
                    best_score = score

            if best_field is None or best_score < self.THRESHOLD:
                suggestions.append(MappingSuggestion(user_column=col.name))
            else:
                suggestions.append(MappingSuggestion(
                    user_column=col.name,
                    marketplace_field=best_field,
                    confidence=round(best_score, 2),
                ))

        return suggestions


# ===================
# SERVICE
# ===================

def no_suggestions(columns: Sequence[ColumnLike]) -> list[MappingSuggestion]:
    """Neutral result: every column unmapped with zero confidence."""
    return [
        MappingSuggestion(user_column=col.name, marketplace_field=None, confidence=0.0)
        for col in columns
    ]


class MappingSuggestionService:
    """
    Suggest column-to-field mappings.

    Never raises: any matcher failure yields no_suggestions(). Does not
    enforce one column per field; two columns may get the same field.
    """

    def __init__(self, matcher: Optional[Matcher] = None):
        if matcher is not None:
            self.matcher = matcher
        elif settings.claude_configured:
            self.matcher = ClaudeMatcher()
        else:
            self.matcher = LexicalMatcher()

    def suggest(
        self,
        columns: Sequence[ColumnLike],
        fields: Sequence[MarketplaceFieldResponse],
        marketplace_name: str,
    ) -> list[MappingSuggestion]:
        """
        One suggestion per source column, in column order.

        Args:
            columns: Source columns with up to 3 sample values each
            fields: Target marketplace fields
            marketplace_name: Display name, used as context

        Returns:
            Suggestions; unknown field names from the matcher become None
        """
        columns = list(columns)
        if not columns:
            return []

        if not fields:
            logger.info("suggestions_skipped_no_fields", column_count=len(columns))
            return no_suggestions(columns)

        matcher_name = type(self.matcher).__name__
        logger.info(
            "suggesting_mappings",
            matcher=matcher_name,
            column_count=len(columns),
            field_count=len(fields),
            marketplace=marketplace_name
        )

        try:
            raw = self.matcher.match(columns, fields, marketplace_name)
        except Exception as e:
            logger.error(
                "mapping_suggestion_failed",
                matcher=matcher_name,
                error=str(e),
                error_type=type(e).__name__
            )
            return no_suggestions(columns)

        suggestions = self._align(columns, raw, {f.field_name for f in fields})

        logger.info(
            "mappings_suggested",
            matcher=matcher_name,
            matched=sum(1 for s in suggestions if s.marketplace_field),
            total=len(suggestions)
        )
        return suggestions

    @staticmethod
    def _align(
        columns: Sequence[ColumnLike],
        raw: list[MappingSuggestion],
        field_names: set[str],
    ) -> list[MappingSuggestion]:
        """Exactly one suggestion per input column, nonsense dropped."""
        by_column: dict[str, MappingSuggestion] = {}
        for suggestion in raw:
            by_column.setdefault(suggestion.user_column, suggestion)

        aligned = []
        for col in columns:
            suggestion = by_column.get(col.name)
            if suggestion is None:
                aligned.append(MappingSuggestion(user_column=col.name))
            elif not suggestion.marketplace_field:
                aligned.append(MappingSuggestion(
                    user_column=col.name,
                    confidence=suggestion.confidence,
                ))
            elif suggestion.marketplace_field not in field_names:
                logger.warning(
                    "suggested_unknown_field",
                    user_column=col.name,
                    marketplace_field=suggestion.marketplace_field
                )
                aligned.append(MappingSuggestion(user_column=col.name))
            else:
                aligned.append(suggestion)

        return aligned


# Singleton instance for convenience
_suggestion_service: Optional[MappingSuggestionService] = None


def get_suggestion_service() -> MappingSuggestionService:
    """Get or create MappingSuggestionService instance."""
    global _suggestion_service
    if _suggestion_service is None:
        _suggestion_service = MappingSuggestionService()
    return _suggestion_service
