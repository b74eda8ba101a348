"""
Dataverse Web API components.

Token acquisition, name lookups and the provisioning operations applied to
the test user before a run.
"""

from .client import DataverseClient, get_access_token, normalize_resource_url
from .lookups import DirectoryLookup
from .provisioning import (
    UserProvisioner,
    RoleAssignmentResult,
    RoleAssignmentStrategy,
    ROLE_ASSIGNMENT_STRATEGIES,
)
from .models import (
    AccessToken,
    DataverseEntityRef,
    EntityKind,
    OperationKind,
    OperationOutcome,
    ProvisioningState,
    Severity,
    FAILURE_POLICY,
)

__all__ = [
    "DataverseClient",
    "get_access_token",
    "normalize_resource_url",
    "DirectoryLookup",
    "UserProvisioner",
    "RoleAssignmentResult",
    "RoleAssignmentStrategy",
    "ROLE_ASSIGNMENT_STRATEGIES",
    "AccessToken",
    "DataverseEntityRef",
    "EntityKind",
    "OperationKind",
    "OperationOutcome",
    "ProvisioningState",
    "Severity",
    "FAILURE_POLICY",
]
