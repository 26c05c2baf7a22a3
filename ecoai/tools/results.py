"""Structured tool results and their wire encoding.

Every tool hands the model exactly one string.  Results that carry data are
JSON objects with a stable camelCase vocabulary (``available``,
``message``, ``alternativeSlots``, ``futureSlots``, ``success``).
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ToolResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_tool_content(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class AvailabilityResult(ToolResult):
    available: bool
    message: str
    alternative_slots: list[str] | None = Field(default=None, alias="alternativeSlots")
    future_slots: list[str] | None = Field(default=None, alias="futureSlots")


class ActionResult(ToolResult):
    """Outcome of a mutating tool (booking, order, contact update)."""

    success: bool
    message: str

    @classmethod
    def ok(cls, message: str) -> ActionResult:
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, message: str) -> ActionResult:
        return cls(success=False, message=message)
