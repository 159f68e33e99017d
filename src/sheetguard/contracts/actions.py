"""Action intent models and the typed outcomes of the parsing stages."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ActionKind(str, Enum):
    """Closed set of actions the pipeline understands."""

    ADD_ROW = "addRow"
    UPDATE_CELL = "updateCell"
    READ_RANGE = "readRange"
    FETCH_TAB_DATA = "fetchTabData"
    UNSUPPORTED = "unsupported"

    @property
    def is_mutating(self) -> bool:
        return self in (ActionKind.ADD_ROW, ActionKind.UPDATE_CELL)

    @classmethod
    def parse(cls, value: Any) -> "ActionKind":
        """Map a raw action name onto the enum; anything unknown is ``unsupported``."""
        if isinstance(value, ActionKind):
            return value
        for kind in cls:
            if kind is not cls.UNSUPPORTED and kind.value == value:
                return kind
        return cls.UNSUPPORTED


# Actions the primary model may call; ``unsupported`` is never offered.
ACTION_VOCABULARY: tuple[str, ...] = tuple(
    k.value for k in ActionKind if k is not ActionKind.UNSUPPORTED
)


class ActionIntent(BaseModel):
    """What the user wants done to the spreadsheet, not yet validated.

    Field aliases follow the backend wire format (``action``,
    ``spreadsheetId``, ``tabName``).
    """

    model_config = ConfigDict(populate_by_name=True)

    kind: ActionKind = Field(default=ActionKind.UNSUPPORTED, alias="action")
    target_spreadsheet_id: str = Field(default="", alias="spreadsheetId")
    target_tab: str = Field(default="", alias="tabName")
    data: dict[str, Any] = Field(default_factory=dict)
    range: str | None = None
    confidence: float = 1.0
    raw_source_text: str = Field(default="", alias="rawSourceText")

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: Any) -> ActionKind:
        return ActionKind.parse(value)

    def wire_payload(self) -> dict[str, Any]:
        """The fields the backend receives for this action."""
        payload: dict[str, Any] = {
            "action": self.kind.value,
            "spreadsheetId": self.target_spreadsheet_id,
            "tabName": self.target_tab,
        }
        if self.range:
            payload["range"] = self.range
        if self.kind is ActionKind.ADD_ROW:
            payload["data"] = dict(self.data)
        elif self.kind is ActionKind.UPDATE_CELL and self.data:
            column, value = next(iter(self.data.items()))
            payload["data"] = {"value": value, "column": column}
        return payload


class ParsedAction(BaseModel):
    type: Literal["action"] = "action"
    intent: ActionIntent


class ParsedText(BaseModel):
    type: Literal["text"] = "text"
    content: str


class ParseFailure(BaseModel):
    type: Literal["failure"] = "failure"
    raw_response: str
    error: str = ""


ParseOutcome = Annotated[
    Union[ParsedAction, ParsedText, ParseFailure], Field(discriminator="type")
]


class NormalizeContext(BaseModel):
    """Context sent with a normalization request."""

    model_config = ConfigDict(populate_by_name=True)

    expected_action: str | None = Field(default=None, alias="expectedAction")
    headers: list[str] = Field(default_factory=list)


class NormalizeSuccess(BaseModel):
    success: Literal[True] = True
    normalized: ActionIntent
    warnings: list[str] = Field(default_factory=list)


class NormalizeFailure(BaseModel):
    success: Literal[False] = False
    error: str


NormalizeResult = Union[NormalizeSuccess, NormalizeFailure]
