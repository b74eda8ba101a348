"""
Test user provisioning operations.

Security role removal and assignment, business unit moves and team membership
changes for the Dataverse user the tests sign in as.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from ..core.exceptions import ApiError, RoleAssignmentError
from ..core.logging_config import get_logger
from .client import DataverseClient
from .models import DataverseEntityRef, EntityKind, RoleRemovalReport


ROLE_REMEDIATION: Dict[int, List[str]] = {
    400: [
        "The user or role id is malformed or refers to a deleted record",
        "The role belongs to a different business unit than the user; "
        "move the user first or pick the role copy in the user's business unit",
    ],
    401: [
        "The app registration is not an Application User in this environment",
        "Admin consent for the Dynamics CRM API has not been granted",
    ],
    403: [
        "The application user lacks the privilege to assign roles "
        "(give it the System Administrator role)",
        "The application user cannot assign a role with more privileges than it holds",
    ],
    404: [
        "The association route or action is not available in this environment",
        "The user or role no longer exists",
    ],
}

DEFAULT_ROLE_REMEDIATION = [
    "Assign the role manually in the Power Platform admin center to confirm it is assignable",
    "Check the service health of the environment and retry",
]

BUSINESS_UNIT_REMEDIATION: Dict[int, List[str]] = {
    400: [
        "The user or business unit id is invalid",
        "The business unit is disabled",
    ],
    403: [
        "The application user lacks the privilege to change a user's business unit",
    ],
}


@dataclass(frozen=True)
class StrategyRequest:
    """HTTP request shape produced by a role assignment strategy."""

    method: str
    path: str
    body: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None


@dataclass
class AttemptResult:
    """Result of a single role assignment attempt."""

    strategy: str
    ok: bool
    error: Optional[ApiError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "ok": self.ok,
            "status_code": self.error.status_code if self.error else None,
            "message": self.error.message if self.error else None,
        }


@dataclass
class RoleAssignmentResult:
    """Which strategy linked the role, and whether the link already existed."""

    strategy: str
    already_assigned: bool = False


@dataclass(frozen=True)
class RoleAssignmentStrategy:
    """
    One way of linking a user to a role.

    ``confirm_on_duplicate`` makes a duplicate-link failure trigger a re-query
    of the user's roles instead of moving on to the next strategy.
    """

    name: str
    build: Callable[[DataverseClient, str, str], StrategyRequest]
    confirm_on_duplicate: bool = False

    async def attempt(
        self, client: DataverseClient, user_id: str, role_id: str
    ) -> AttemptResult:
        request = self.build(client, user_id, role_id)
        try:
            await client.call(request.method, request.path, request.body, request.headers)
        except ApiError as e:
            return AttemptResult(strategy=self.name, ok=False, error=e)
        return AttemptResult(strategy=self.name, ok=True)


def _user_roles_ref(client: DataverseClient, user_id: str, role_id: str) -> StrategyRequest:
    return StrategyRequest(
        "POST",
        f"systemusers({user_id})/systemuserroles_association/$ref",
        {"@odata.id": client.entity_url(f"roles({role_id})")},
    )


def _role_users_ref(client: DataverseClient, user_id: str, role_id: str) -> StrategyRequest:
    return StrategyRequest(
        "POST",
        f"roles({role_id})/systemuserroles_association/$ref",
        {"@odata.id": client.entity_url(f"systemusers({user_id})")},
    )


def _associate_action(client: DataverseClient, user_id: str, role_id: str) -> StrategyRequest:
    return StrategyRequest(
        "POST",
        "Associate",
        {
            "Target": {
                "@odata.type": "Microsoft.Dynamics.CRM.systemuser",
                "systemuserid": user_id,
            },
            "Relationship": "systemuserroles_association",
            "RelatedEntities": [
                {"@odata.type": "Microsoft.Dynamics.CRM.role", "roleid": role_id}
            ],
        },
    )


def _join_collection(client: DataverseClient, user_id: str, role_id: str) -> StrategyRequest:
    return StrategyRequest(
        "POST",
        "systemuserrolescollection",
        {
            "systemuserid@odata.bind": f"/systemusers({user_id})",
            "roleid@odata.bind": f"/roles({role_id})",
        },
    )


def _add_user_to_role(client: DataverseClient, user_id: str, role_id: str) -> StrategyRequest:
    return StrategyRequest(
        "POST",
        "AddUserToRole",
        {"UserId": user_id, "RoleId": role_id},
    )


def _user_roles_ref_conditional(
    client: DataverseClient, user_id: str, role_id: str
) -> StrategyRequest:
    request = _user_roles_ref(client, user_id, role_id)
    return StrategyRequest(
        request.method, request.path, request.body, {"If-None-Match": "null"}
    )


ROLE_ASSIGNMENT_STRATEGIES: List[RoleAssignmentStrategy] = [
    RoleAssignmentStrategy("user_roles_ref", _user_roles_ref, confirm_on_duplicate=True),
    RoleAssignmentStrategy("role_users_ref", _role_users_ref),
    RoleAssignmentStrategy("associate_action", _associate_action),
    RoleAssignmentStrategy("join_collection", _join_collection),
    RoleAssignmentStrategy("add_user_to_role_action", _add_user_to_role),
    RoleAssignmentStrategy("user_roles_ref_conditional", _user_roles_ref_conditional),
]


def _same_id(left: Optional[str], right: Optional[str]) -> bool:
    return bool(left) and bool(right) and left.lower() == right.lower()


class UserProvisioner:
    """Applies role, team and business unit changes to a Dataverse user."""

    def __init__(
        self,
        client: DataverseClient,
        strategies: Optional[List[RoleAssignmentStrategy]] = None,
    ):
        self.client = client
        self.strategies = strategies if strategies is not None else ROLE_ASSIGNMENT_STRATEGIES
        self.logger = get_logger(__name__)

    async def list_roles(self, user_id: str) -> List[DataverseEntityRef]:
        """Roles currently associated with the user."""
        payload = await self.client.call(
            "GET",
            f"systemusers({user_id})/systemuserroles_association?$select=roleid,name",
        )
        return [
            DataverseEntityRef(
                kind=EntityKind.ROLE, id=record["roleid"], name=record.get("name") or ""
            )
            for record in payload.get("value") or []
        ]

    async def has_role(self, user_id: str, role_id: str) -> bool:
        roles = await self.list_roles(user_id)
        return any(_same_id(role.id, role_id) for role in roles)

    async def get_business_unit_id(self, user_id: str) -> Optional[str]:
        payload = await self.client.call(
            "GET", f"systemusers({user_id})?$select=_businessunitid_value"
        )
        return payload.get("_businessunitid_value")

    async def remove_all_security_roles(self, user_id: str) -> RoleRemovalReport:
        """
        Remove every role from the user.

        Individual failures are logged and skipped; the report lists what was
        and was not removed.
        """
        report = RoleRemovalReport()
        roles = await self.list_roles(user_id)
        self.logger.info(f"Removing {len(roles)} security role(s) from user {user_id}")

        for role in roles:
            try:
                await self.revoke_security_role(user_id, role.id)
                report.removed.append(role)
            except (ApiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.logger.warning(f"Could not remove role {role}: {e}")
                report.failed.append(role)

        if report.failed:
            self.logger.warning(
                f"Removed {len(report.removed)} of {len(roles)} role(s); "
                f"{len(report.failed)} still assigned",
                extra={"metadata": {"failed": [str(r) for r in report.failed]}},
            )
        return report

    async def revoke_security_role(self, user_id: str, role_id: str) -> None:
        """Delete one user/role association."""
        await self.client.call(
            "DELETE",
            f"systemusers({user_id})/systemuserroles_association({role_id})/$ref",
        )

    async def restore_security_role(self, user_id: str, role_id: str) -> None:
        """Re-link a role removed earlier in the run; an existing link counts as restored."""
        request = _user_roles_ref(self.client, user_id, role_id)
        try:
            await self.client.call(request.method, request.path, request.body)
        except ApiError as e:
            if not e.is_duplicate:
                raise

    async def check_business_unit_compatibility(self, user_id: str, role_id: str) -> bool:
        """
        Warn when the user and role live in different business units.

        Never raises and never blocks assignment.
        """
        try:
            user_bu = await self.get_business_unit_id(user_id)
            role = await self.client.call(
                "GET", f"roles({role_id})?$select=_businessunitid_value"
            )
            role_bu = role.get("_businessunitid_value")
        except Exception as e:
            self.logger.warning(f"Business unit compatibility check skipped: {e}")
            return True

        if user_bu and role_bu and not _same_id(user_bu, role_bu):
            self.logger.warning(
                "User and role belong to different business units; assignment may be rejected",
                extra={"metadata": {"user_business_unit": user_bu, "role_business_unit": role_bu}},
            )
            return False
        return True

    async def assign_security_role(self, user_id: str, role_id: str) -> RoleAssignmentResult:
        """
        Assign a role, trying each strategy in order until one succeeds.

        Returns:
            The succeeding strategy; ``already_assigned`` is set when the user
            held the role before this call

        Raises:
            RoleAssignmentError: If every strategy failed
        """
        await self.check_business_unit_compatibility(user_id, role_id)

        attempts: List[AttemptResult] = []
        for strategy in self.strategies:
            result = await strategy.attempt(self.client, user_id, role_id)
            attempts.append(result)

            if result.ok:
                self.logger.info(
                    f"Role {role_id} assigned to user {user_id} via {strategy.name}"
                )
                return RoleAssignmentResult(strategy.name)

            self.logger.warning(
                f"Role assignment via {strategy.name} failed: {result.error.message}"
            )

            if strategy.confirm_on_duplicate and result.error.is_duplicate:
                if await self.has_role(user_id, role_id):
                    self.logger.info(
                        f"Role {role_id} is already assigned to user {user_id}"
                    )
                    return RoleAssignmentResult(strategy.name, already_assigned=True)

        last_status = attempts[-1].error.status_code if attempts else None
        raise RoleAssignmentError(
            f"All {len(attempts)} role assignment strategies failed "
            f"(last status {last_status})",
            last_status=last_status,
            attempts=[a.to_dict() for a in attempts],
            remediation=ROLE_REMEDIATION.get(last_status, DEFAULT_ROLE_REMEDIATION),
        )

    async def update_business_unit(self, user_id: str, business_unit_id: str) -> None:
        """Move the user to another business unit."""
        try:
            await self.client.call(
                "PATCH",
                f"systemusers({user_id})",
                {"businessunitid@odata.bind": f"/businessunits({business_unit_id})"},
            )
        except ApiError as e:
            if not e.remediation:
                e.remediation = BUSINESS_UNIT_REMEDIATION.get(e.status_code, [])
            raise
        self.logger.info(f"User {user_id} moved to business unit {business_unit_id}")

    async def add_user_to_team(self, user_id: str, team_id: str) -> bool:
        """
        Add the user to a team.

        Returns:
            False when the user was already a member
        """
        try:
            await self.client.call(
                "POST",
                f"teams({team_id})/teammembership_association/$ref",
                {"@odata.id": self.client.entity_url(f"systemusers({user_id})")},
            )
        except ApiError as e:
            if e.is_duplicate:
                self.logger.info(f"User {user_id} is already a member of team {team_id}")
                return False
            raise
        self.logger.info(f"User {user_id} added to team {team_id}")
        return True

    async def remove_user_from_team(self, user_id: str, team_id: str) -> bool:
        """
        Remove the user from a team. Best-effort; never raises.

        Returns:
            True if the membership was removed
        """
        try:
            await self.client.call(
                "DELETE",
                f"teams({team_id})/teammembership_association({user_id})/$ref",
            )
        except Exception as e:
            if isinstance(e, ApiError) and e.status_code == 404:
                self.logger.info(f"User {user_id} was not a member of team {team_id}")
            else:
                self.logger.warning(f"Could not remove user {user_id} from team {team_id}: {e}")
            return False
        self.logger.info(f"User {user_id} removed from team {team_id}")
        return True
