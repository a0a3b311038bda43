from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from crm_activity.schemas.common import PanelMode, Role, ViewMode


class UserContext(BaseModel):
    """The authenticated user, passed explicitly to every builder call."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    role: Role
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return str(value) if value is not None else value

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, value):
        return value.upper() if isinstance(value, str) else value

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.OWNER, Role.ADMIN)


class QueryContext(BaseModel):
    """Inputs of the role-scoped query builder."""

    model_config = ConfigDict(frozen=True)

    role: Role
    self_id: str
    view_mode: ViewMode = ViewMode.overview
    selected_user_id: Optional[str] = None
    search: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.OWNER, Role.ADMIN)


class ViewState(BaseModel):
    """What one caller is looking at: view, panel pair, selection and search.

    Passed explicitly through a request so concurrent callers sharing a
    session never read each other's view.
    """

    model_config = ConfigDict(frozen=True)

    view_mode: ViewMode = ViewMode.overview
    panel_mode: PanelMode = PanelMode.day
    selected_user_id: Optional[str] = None
    search: Optional[str] = None


class QueryFilters(BaseModel):
    """Role-derived filters attached to every fetch of a batch."""

    model_config = ConfigDict(frozen=True)

    assigned_to_user_id: Optional[str] = None
    created_by_user_id: Optional[str] = None
    scope_owner_id: Optional[str] = None
    search: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        """Return the query-string parameters understood by the activity API."""
        params: Dict[str, str] = {}
        if self.assigned_to_user_id:
            params["assignedToUserId"] = self.assigned_to_user_id
        if self.created_by_user_id:
            params["createdBy"] = self.created_by_user_id
        if self.scope_owner_id:
            params["userId"] = self.scope_owner_id
        if self.search:
            params["q"] = self.search
        return params


class DoNotFetch(BaseModel):
    """Sentinel returned when the current view cannot be queried yet."""

    model_config = ConfigDict(frozen=True)

    reason: str


class ScopeInterval(BaseModel):
    """Closed local-time interval ``[from_, to]``; both ends are naive."""

    model_config = ConfigDict(frozen=True)

    from_: datetime
    to: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "ScopeInterval":
        if self.from_.tzinfo is not None or self.to.tzinfo is not None:
            raise ValueError("scope boundaries must be naive local datetimes")
        if self.from_ > self.to:
            raise ValueError("scope start must not be after its end")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.from_ <= moment <= self.to
