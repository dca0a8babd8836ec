"""Row conversion shared by the persisted models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ConfigDict

from receivables.utils.normalize import money_to_float

RowModelT = TypeVar("RowModelT", bound="RowModel")


def to_row_value(value: Any) -> Any:
    """Convert a python value to the JSON-compatible form the store accepts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return money_to_float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [to_row_value(v) for v in value]
    if isinstance(value, dict):
        return {k: to_row_value(v) for k, v in value.items()}
    return value


class RowModel(BaseModel):
    """Base for models persisted as one row of a store table."""

    model_config = ConfigDict(use_enum_values=False)

    def to_row(self) -> Dict[str, Any]:
        return {name: to_row_value(getattr(self, name)) for name in type(self).model_fields}

    @classmethod
    def from_row(cls: Type[RowModelT], row: Dict[str, Any]) -> RowModelT:
        known = {k: v for k, v in row.items() if k in cls.model_fields}
        return cls.model_validate(known)
