"""Base model for presence records on the wire.

Every wire model inherits from :class:`PresenceBaseModel` which
provides:

* ``alias_generator=to_camel`` so the camelCase keys other clients write
  map automatically to snake_case fields.
* A ``model_validator(mode="before")`` that coerces each known field with
  a per-field rule and *drops* values the rule rejects, so a single
  malformed field falls back to its default instead of failing the whole
  record.  Explicit ``null`` values are kept: they mean "cleared".
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

_DROP = object()


class PresenceBaseModel(BaseModel):
    """Base for presence wire models.

    Handles:
    * camelCase → snake_case via ``alias_generator=to_camel``
    * Per-field coercion via ``_COERCERS``; a coercer returning ``None`` for
      a non-null input marks the value as malformed and it is dropped
    * Stashes the original payload dict in ``raw``
    """

    _COERCERS: ClassVar[dict[str, Callable[[Any], Any]]] = {}
    """Wire-key → coercer mapping applied before validation."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original payload dict."""

    @staticmethod
    def _coerce_value(value: Any, coercer: Callable[[Any], Any] | None) -> Any:
        if value is None:
            return None
        if isinstance(value, float) and math.isnan(value):
            return _DROP
        if coercer is None:
            return value
        coerced = coercer(value)
        return _DROP if coerced is None else coerced

    @model_validator(mode="before")
    @classmethod
    def _coerce_fields(cls, values: Any) -> Any:
        """Coerce known fields one by one and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        coercers: dict[str, Callable[[Any], Any]] = getattr(cls, "_COERCERS", {})

        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if key == "raw":
                continue
            coercer = coercers.get(key) or coercers.get(to_camel(key))
            result = PresenceBaseModel._coerce_value(value, coercer)
            if result is _DROP:
                continue
            cleaned[key] = result

        # Only auto-stash raw when not explicitly provided (i.e. model_validate
        # from a store record).
        cleaned["raw"] = values["raw"] if "raw" in values else dict(values)
        return cleaned

    def provided(self, name: str) -> bool:
        """Whether the payload carried field *name* (even as an explicit null)."""
        return name in self.model_fields_set
