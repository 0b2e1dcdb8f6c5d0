"""Schemas for usage tracking callbacks."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from usage_tracking.lib.metrics import LabelKey


class TrackRequest(BaseModel):
    """Payload posted by the authorization callback for one successful request.

    Decoding is lenient in the same places the callback's producers rely on:
    member names match regardless of case (the last spelling wins), and JSON
    ``null`` leaves a field at its default, so a null ``user`` is reported as
    missing rather than malformed.
    """

    user: str = ""
    groups: str = ""
    path: str = ""
    host: str | None = Field(default=None)
    method: str | None = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def fold_member_names(cls, data: Any) -> Any:
        if data is None:
            return {}
        if not isinstance(data, dict):
            return data
        folded: dict[str, Any] = {}
        for key, value in data.items():
            name = key.lower()
            if name in cls.model_fields:
                folded[name] = value
        return folded

    @field_validator("user", "groups", "path", mode="before")
    @classmethod
    def null_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def label_key(self) -> LabelKey:
        """Return the counter key; host and method are informational only."""

        return LabelKey(self.user, self.groups, self.path)
