from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON, TypeDecorator


class JSONType(TypeDecorator[dict[str, Any]]):
    """
    Column type for the serialised Execution Record state.

    JSONB on PostgreSQL (indexable, compact), plain JSON elsewhere (SQLite
    in tests). Values are always the ``model_dump(mode="json")`` form, so
    no custom encoder is needed.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_result_value(self, value: Any, dialect: Any) -> dict[str, Any]:
        return value if value is not None else {}
