"""
Data models for Dataverse provisioning.

Defines the token, entity reference and provisioning state records shared by
the HTTP client, directory lookups and provisioning operations.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class EntityKind(Enum):
    """Dataverse entities resolved by name."""

    USER = "user"
    ROLE = "role"
    TEAM = "team"
    BUSINESS_UNIT = "business unit"

    @property
    def entity_set(self) -> str:
        return _ENTITY_SETS[self][0]

    @property
    def id_attribute(self) -> str:
        return _ENTITY_SETS[self][1]

    @property
    def name_attribute(self) -> str:
        return _ENTITY_SETS[self][2]


_ENTITY_SETS = {
    EntityKind.USER: ("systemusers", "systemuserid", "domainname"),
    EntityKind.ROLE: ("roles", "roleid", "name"),
    EntityKind.TEAM: ("teams", "teamid", "name"),
    EntityKind.BUSINESS_UNIT: ("businessunits", "businessunitid", "name"),
}


class AccessToken(BaseModel):
    """Bearer token for the Dataverse Web API. Never persisted."""

    model_config = ConfigDict(frozen=True)

    value: SecretStr = Field(..., description="Bearer token")
    expires_in: int = Field(3600, ge=0, description="Lifetime in seconds")
    acquired_at: float = Field(default_factory=time.time)

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.acquired_at + self.expires_in

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.value.get_secret_value()}"


class DataverseEntityRef(BaseModel):
    """Identifier resolved from a display name."""

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    id: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind.value} '{self.name}' ({self.id})"


class OperationKind(Enum):
    """Provisioning operations, keyed for the failure policy table."""

    AUTHENTICATE = "authenticate"
    LOOKUP = "lookup"
    UPDATE_BUSINESS_UNIT = "update_business_unit"
    REMOVE_ROLES = "remove_roles"
    ASSIGN_ROLE = "assign_role"
    ADD_TO_TEAM = "add_to_team"
    REVOKE_ROLE = "revoke_role"
    RESTORE_ROLES = "restore_roles"
    REMOVE_FROM_TEAM = "remove_from_team"


class Severity(Enum):
    """How the orchestrator reacts when an operation fails."""

    FATAL = "fatal"
    RECOVERABLE = "recoverable"


# Fatal aborts the provisioning phase only; the test run always proceeds.
FAILURE_POLICY: Dict[OperationKind, Severity] = {
    OperationKind.AUTHENTICATE: Severity.FATAL,
    OperationKind.LOOKUP: Severity.FATAL,
    OperationKind.UPDATE_BUSINESS_UNIT: Severity.FATAL,
    OperationKind.REMOVE_ROLES: Severity.RECOVERABLE,
    OperationKind.ASSIGN_ROLE: Severity.FATAL,
    OperationKind.ADD_TO_TEAM: Severity.FATAL,
    OperationKind.REVOKE_ROLE: Severity.RECOVERABLE,
    OperationKind.RESTORE_ROLES: Severity.RECOVERABLE,
    OperationKind.REMOVE_FROM_TEAM: Severity.RECOVERABLE,
}


@dataclass
class OperationOutcome:
    """Result of one provisioning operation."""

    kind: OperationKind
    ok: bool
    value: Any = None
    error: Optional[Exception] = None

    @property
    def severity(self) -> Optional[Severity]:
        if self.ok:
            return None
        return FAILURE_POLICY[self.kind]

    @property
    def is_fatal(self) -> bool:
        return self.severity == Severity.FATAL


@dataclass
class RoleRemovalReport:
    """Outcome of a best-effort bulk role removal."""

    removed: List[DataverseEntityRef] = field(default_factory=list)
    failed: List[DataverseEntityRef] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass
class ProvisioningState:
    """
    What this run changed on the test user.

    Cleanup reads only this record, so it reverses exactly what the run
    applied and never a pre-existing assignment.
    """

    configured: bool = False
    user: Optional[DataverseEntityRef] = None
    token: Optional[AccessToken] = None
    assigned_role: Optional[DataverseEntityRef] = None
    role_was_preexisting: bool = False
    removed_roles: List[DataverseEntityRef] = field(default_factory=list)
    joined_team: Optional[DataverseEntityRef] = None
    business_unit: Optional[DataverseEntityRef] = None
    previous_business_unit_id: Optional[str] = None
    outcomes: List[OperationOutcome] = field(default_factory=list)

    @property
    def role_assigned(self) -> bool:
        return self.assigned_role is not None and not self.role_was_preexisting

    @property
    def team_joined(self) -> bool:
        return self.joined_team is not None

    @property
    def business_unit_changed(self) -> bool:
        return self.business_unit is not None

    @property
    def cleanup_eligible(self) -> bool:
        return self.configured and self.token is not None and self.user is not None

    def record(self, outcome: OperationOutcome) -> OperationOutcome:
        self.outcomes.append(outcome)
        return outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "configured": self.configured,
            "user": str(self.user) if self.user else None,
            "role_assigned": self.role_assigned,
            "assigned_role": str(self.assigned_role) if self.assigned_role else None,
            "removed_roles": [str(r) for r in self.removed_roles],
            "team_joined": self.team_joined,
            "business_unit_changed": self.business_unit_changed,
            "previous_business_unit_id": self.previous_business_unit_id,
        }
