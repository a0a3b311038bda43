from datetime import datetime, tzinfo
from typing import Annotated, Any, List, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    PlainValidator,
    field_validator,
    model_validator,
)

from crm_activity.core.timestamps import (
    AbsoluteTimestamp,
    LocalTimestamp,
    parse_timestamp,
)
from crm_activity.schemas.common import ActivityKind, MeetingStatus, ReminderStatus

WhenType = Annotated[
    Union[LocalTimestamp, AbsoluteTimestamp],
    PlainValidator(parse_timestamp),
    PlainSerializer(lambda ts: ts.isoformat(), return_type=str),
]


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class Activity(BaseModel):
    """A reminder (CALL/EMAIL) or meeting as returned by the activity API.

    Instances are only ever built from fetched payloads and are frozen:
    the aggregator never mutates an activity locally.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    kind: ActivityKind = Field(validation_alias=AliasChoices("kind", "type"))
    when: WhenType = Field(
        validation_alias=AliasChoices("when", "due_ts", "starts_at", "when_ts")
    )
    status: str
    title: Optional[str] = Field(
        None, validation_alias=AliasChoices("title", "subject")
    )
    assignee: Optional[str] = Field(
        None, validation_alias=AliasChoices("assignee", "assigned_to")
    )
    assigned_to_user_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("assignedToUserId", "assigned_to_user_id"),
    )
    created_by: Optional[str] = Field(
        None, validation_alias=AliasChoices("createdBy", "created_by")
    )
    created_by_user_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("createdByUserId", "created_by_user_id"),
    )
    opportunity_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("opportunityId", "opportunity_id")
    )
    client_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("clientName", "client_name")
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None or value == "":
            raise ValueError("activity id is required")
        return str(value)

    @field_validator("kind", "status", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator(
        "assigned_to_user_id",
        "created_by_user_id",
        "opportunity_id",
        mode="before",
    )
    @classmethod
    def _coerce_optional_id(cls, value: Any) -> Optional[str]:
        return _optional_str(value)

    @model_validator(mode="after")
    def _status_matches_kind(self) -> "Activity":
        family = MeetingStatus if self.kind == ActivityKind.MEETING else ReminderStatus
        allowed = {s.value for s in family}
        if self.status not in allowed:
            raise ValueError(
                f"status {self.status!r} is not valid for {self.kind.value}"
            )
        return self

    @property
    def is_reminder(self) -> bool:
        return self.kind in (ActivityKind.CALL, ActivityKind.EMAIL)

    def local_when(self, tz: Optional[tzinfo] = None) -> datetime:
        """Return ``when`` as a naive local datetime."""
        return self.when.to_local(tz)


class ActivityPage(BaseModel):
    """Envelope of ``GET /activities``."""

    model_config = ConfigDict(extra="ignore")

    items: List[Activity] = Field(default_factory=list)
