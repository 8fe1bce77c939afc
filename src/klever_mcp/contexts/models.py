"""
Context data models.

Defines ContextPayload and its metadata, the query parameter/result types,
and the camelCase wire format shared by the Redis backend and the tool
front end.

## Wire format

    {
        "id": "...",
        "type": "code_example",
        "content": "...",
        "metadata": {
            "title": "...", "description": "...", "tags": [...],
            "relevanceScore": 0.9, "contractType": "token",
            "language": "rust", "author": "...",
            "createdAt": "2024-01-01T00:00:00+00:00",
            "updatedAt": "2024-01-01T00:00:00+00:00"
        },
        "relatedContextIds": [...]
    }

Optional fields that are unset are omitted on output.
"""

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..config import Config
from ..errors import ValidationError


class ContextType(str, Enum):
    """Fixed classification of a context record; drives the type index."""

    CODE_EXAMPLE = "code_example"
    BEST_PRACTICE = "best_practice"
    SECURITY_TIP = "security_tip"
    OPTIMIZATION = "optimization"
    DOCUMENTATION = "documentation"
    ERROR_PATTERN = "error_pattern"
    DEPLOYMENT_TOOL = "deployment_tool"
    RUNTIME_BEHAVIOR = "runtime_behavior"


# Wire key -> dataclass attribute
METADATA_FIELDS: dict[str, str] = {
    "title": "title",
    "description": "description",
    "tags": "tags",
    "relevanceScore": "relevance_score",
    "contractType": "contract_type",
    "language": "language",
    "author": "author",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

# Owned by the storage engine; ignored in partial updates
MANAGED_METADATA_FIELDS = frozenset({"createdAt", "updatedAt"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_context_type(value: Any) -> ContextType:
    """Parse a context type value, raising ValidationError if unknown."""
    if isinstance(value, ContextType):
        return value
    try:
        return ContextType(value)
    except ValueError:
        valid = ", ".join(t.value for t in ContextType)
        raise ValidationError(f"Invalid context type '{value}'. Valid types: {valid}")


def _parse_str(value: Any, name: str, optional: bool = False) -> Optional[str]:
    if value is None and optional:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{name}' must be a string, got {type(value).__name__}")
    return value


def _parse_str_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"'{name}' must be a list of strings")
    # Collapse duplicates, keep first-seen order
    return list(dict.fromkeys(value))


def _parse_score(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"'relevanceScore' must be a number, got {type(value).__name__}"
        )
    if not 0 <= value <= 1:
        raise ValidationError(f"'relevanceScore' must be between 0 and 1, got {value}")
    return float(value)


def _parse_timestamp(value: Any, name: str) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"'{name}' must be an ISO-8601 timestamp, got '{value}'")
    else:
        raise ValidationError(f"'{name}' must be an ISO-8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require_mapping(value: Any, name: str) -> Mapping:
    if not isinstance(value, Mapping):
        raise ValidationError(f"'{name}' must be an object, got {type(value).__name__}")
    return value


def _parse_metadata_field(key: str, value: Any) -> Any:
    if key == "title":
        return _parse_str(value, "title")
    if key == "tags":
        return _parse_str_list(value, "tags")
    if key == "relevanceScore":
        return _parse_score(value)
    if key == "language":
        return "rust" if value is None else _parse_str(value, "language")
    if key in MANAGED_METADATA_FIELDS:
        return _parse_timestamp(value, key)
    return _parse_str(value, key, optional=True)


@dataclass
class ContextMetadata:
    """
    Descriptive metadata of a context record.

    `tags` and `contract_type` drive secondary indices. `created_at` and
    `updated_at` are managed by the storage engine.
    """

    title: str
    description: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    relevance_score: Optional[float] = None
    contract_type: Optional[str] = None
    language: str = "rust"
    author: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ContextMetadata":
        data = _require_mapping(data, "metadata")
        if "title" not in data:
            raise ValidationError("'metadata.title' is required")
        unknown = set(data) - set(METADATA_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")
        values = {
            METADATA_FIELDS[key]: _parse_metadata_field(key, value)
            for key, value in data.items()
        }
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for key, attr in METADATA_FIELDS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            data[key] = value
        return data


@dataclass
class ContextPayload:
    """
    A stored knowledge unit.

    Invariants:
    - id is unique across the store and immutable once assigned
    - updated_at >= created_at; created_at never changes after the first store
    """

    type: ContextType
    content: str
    metadata: ContextMetadata
    id: Optional[str] = None
    related_context_ids: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.type = parse_context_type(self.type)

    @classmethod
    def from_dict(cls, data: Any) -> "ContextPayload":
        """
        Parse and validate a wire-form payload.

        Raises:
            ValidationError: If any field is missing or malformed
        """
        data = _require_mapping(data, "payload")
        for key in ("type", "content", "metadata"):
            if key not in data:
                raise ValidationError(f"'{key}' is required")

        return cls(
            id=_parse_str(data.get("id"), "id", optional=True),
            type=parse_context_type(data["type"]),
            content=_parse_str(data["content"], "content"),
            metadata=ContextMetadata.from_dict(data["metadata"]),
            related_context_ids=_parse_str_list(
                data.get("relatedContextIds"), "relatedContextIds"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.id is not None:
            data["id"] = self.id
        data["type"] = self.type.value
        data["content"] = self.content
        data["metadata"] = self.metadata.to_dict()
        data["relatedContextIds"] = list(self.related_context_ids)
        return data

    def copy(self) -> "ContextPayload":
        return copy.deepcopy(self)

    def validated(self) -> "ContextPayload":
        """
        Return a copy checked by the same rules as `from_dict`.

        Objects built directly skip wire parsing, so scores, strings and
        timestamps are re-checked here. Naive timestamps become UTC.

        Raises:
            ValidationError: If any field is malformed
        """
        return ContextPayload.from_dict(self.to_dict())

    def merged(self, changes: Any) -> "ContextPayload":
        """
        Return a copy with a partial wire-form update applied.

        Only the provided top-level fields and metadata fields change.
        `id`, `metadata.createdAt` and `metadata.updatedAt` are ignored.

        Raises:
            ValidationError: If a provided field is malformed or unknown
        """
        changes = _require_mapping(changes, "changes")
        unknown = set(changes) - {"id", "type", "content", "metadata", "relatedContextIds"}
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        updated = self.copy()
        if "type" in changes:
            updated.type = parse_context_type(changes["type"])
        if "content" in changes:
            updated.content = _parse_str(changes["content"], "content")
        if "relatedContextIds" in changes:
            updated.related_context_ids = _parse_str_list(
                changes["relatedContextIds"], "relatedContextIds"
            )
        if "metadata" in changes:
            metadata_changes = _require_mapping(changes["metadata"], "metadata")
            unknown = set(metadata_changes) - set(METADATA_FIELDS)
            if unknown:
                raise ValidationError(
                    f"Unknown metadata fields: {', '.join(sorted(unknown))}"
                )
            for key, value in metadata_changes.items():
                if key in MANAGED_METADATA_FIELDS:
                    continue
                setattr(updated.metadata, METADATA_FIELDS[key], _parse_metadata_field(key, value))
        return updated

    def searchable_text(self) -> str:
        """Lower-cased content, title, description and tags for free-text matching."""
        return " ".join(
            [
                self.content,
                self.metadata.title,
                self.metadata.description or "",
                " ".join(self.metadata.tags),
            ]
        ).lower()


@dataclass
class QueryParams:
    """
    Filter and pagination parameters for a context query.

    Filter precedence for candidate selection: types > tags > contract_type.
    Every provided filter is applied to the final result set.
    """

    types: Optional[list[ContextType]] = None
    tags: Optional[list[str]] = None
    contract_type: Optional[str] = None
    query: Optional[str] = None
    limit: int = field(default_factory=lambda: Config.DEFAULT_QUERY_LIMIT)
    offset: int = 0

    def __post_init__(self):
        if self.types is not None:
            self.types = [parse_context_type(t) for t in self.types]
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit <= 0:
            raise ValidationError(f"'limit' must be a positive integer, got {self.limit}")
        if isinstance(self.offset, bool) or not isinstance(self.offset, int) or self.offset < 0:
            raise ValidationError(f"'offset' must be a non-negative integer, got {self.offset}")

    @classmethod
    def from_dict(cls, data: Any) -> "QueryParams":
        data = _require_mapping(data or {}, "query")
        unknown = set(data) - {"types", "tags", "contractType", "query", "limit", "offset"}
        if unknown:
            raise ValidationError(f"Unknown query fields: {', '.join(sorted(unknown))}")

        types = data.get("types")
        if types is not None and not isinstance(types, list):
            raise ValidationError("'types' must be a list")
        kwargs: dict[str, Any] = {
            "types": types,
            "tags": _parse_str_list(data["tags"], "tags") if data.get("tags") is not None else None,
            "contract_type": _parse_str(data.get("contractType"), "contractType", optional=True),
            "query": _parse_str(data.get("query"), "query", optional=True),
        }
        if data.get("limit") is not None:
            kwargs["limit"] = data["limit"]
        if data.get("offset") is not None:
            kwargs["offset"] = data["offset"]
        return cls(**kwargs)

    @property
    def has_filters(self) -> bool:
        return bool(
            self.types
            or self.tags
            or self.contract_type
            or (self.query and self.query.strip())
        )


@dataclass
class QueryResult:
    """One page of query results; `total` counts matches before pagination."""

    results: list[ContextPayload]
    total: int
    offset: int
    limit: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [context.to_dict() for context in self.results],
            "total": self.total,
            "pagination": {"offset": self.offset, "limit": self.limit},
        }
