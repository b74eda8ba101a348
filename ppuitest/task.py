"""
Task orchestrator.

Sequences a run: optional test user provisioning, environment bootstrap, test
staging and execution, artifact collection and a guaranteed cleanup that
reverts what provisioning changed. The test runner's exit code is the task's
exit code.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import aiohttp

from .core.config import Config
from .core.diagnostics import render_diagnostic
from .core.exceptions import UITestTaskError
from .core.logging_config import get_logger, register_secrets
from .core.pipeline import IssueType, log_issue
from .core.run_config import RunConfiguration
from .core.workflow import RunContext, TaskState
from .dataverse.client import DataverseClient, get_access_token
from .dataverse.lookups import DirectoryLookup
from .dataverse.models import (
    OperationKind,
    OperationOutcome,
    ProvisioningState,
)
from .dataverse.provisioning import UserProvisioner
from .environment.bootstrap import EnvironmentBootstrapper
from .environment.commands import CommandRunner
from .execution.analyzer import FailureAnalyzer
from .execution.artifacts import ArtifactCollector
from .execution.executor import TestRunner
from .execution.models import TestRunResult


GENERIC_FAILURE_EXIT_CODE = 1


class ProvisioningAborted(Exception):
    """A fatal provisioning outcome stopped the provisioning phase."""

    def __init__(self, outcome: OperationOutcome):
        super().__init__(f"{outcome.kind.value} failed: {outcome.error}")
        self.outcome = outcome


class UITestTask:
    """
    Runs one UI test task end to end.

    Provisioning failures never stop the test run; bootstrap and execution
    failures end it with exit code 1; cleanup failures are only logged.
    """

    def __init__(
        self,
        run_config: RunConfiguration,
        config: Optional[Config] = None,
        context: Optional[RunContext] = None,
        runner: Optional[CommandRunner] = None,
        bootstrapper: Optional[EnvironmentBootstrapper] = None,
        test_runner: Optional[TestRunner] = None,
        analyzer: Optional[FailureAnalyzer] = None,
        collector: Optional[ArtifactCollector] = None,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        self.run_config = run_config
        self.config = config or Config.from_env()
        self.context = context or RunContext()
        self.runner = runner or CommandRunner()
        self.session_factory = session_factory
        self.bootstrapper = bootstrapper or EnvironmentBootstrapper(
            self.config, self.runner, session_factory
        )
        self.test_runner = test_runner or TestRunner(self.config, self.runner)
        self.analyzer = analyzer or FailureAnalyzer(self.config)
        self.collector = collector or ArtifactCollector(self.config)
        self.logger = get_logger("ppuitest.task", run_id=self.context.run_id)
        self.state: Optional[ProvisioningState] = None
        self.result: Optional[TestRunResult] = None

    async def run(self) -> int:
        """
        Execute the task.

        Returns:
            Test runner exit code, or 1 if no code was produced
        """
        register_secrets(self.run_config.secrets())
        self.logger.info(
            "Starting UI test task",
            extra={"metadata": {"run_id": self.context.run_id, **self.run_config.to_dict()}},
        )

        exit_code = GENERIC_FAILURE_EXIT_CODE
        async with self.session_factory() as session:
            async with self.provisioned_user(session) as state:
                self.state = state
                try:
                    exit_code = await self._run_tests()
                except UITestTaskError as e:
                    self.logger.error(render_diagnostic(e), extra={"metadata": e.to_dict()})
                    log_issue(IssueType.ERROR, e.message)
                except Exception as e:
                    self.logger.exception(render_diagnostic(e, "Unexpected error"))
                    log_issue(IssueType.ERROR, str(e))

        self.context.transition_to(TaskState.DONE, {"exit_code": exit_code})
        self.logger.info(
            f"UI test task finished with exit code {exit_code} ({self.context.duration:.2f}s)",
            extra={"metadata": {"provisioning": self.state.to_dict() if self.state else None}},
        )
        return exit_code

    async def _run_tests(self) -> int:
        run_config = self.run_config

        self.context.transition_to(TaskState.BOOTSTRAP)
        await self.bootstrapper.ensure_runtime_installed()
        self.bootstrapper.fetch_test_framework(
            run_config.repository_url, run_config.repository_ref
        )
        self.bootstrapper.install_framework_dependencies(run_config.browser)

        self.context.transition_to(TaskState.STAGE)
        staged = self.test_runner.stage_tests(
            run_config.tests_path, self.config.framework_tests_dir
        )

        self.context.transition_to(TaskState.EXECUTE)
        result = self.test_runner.run_tests(run_config, staged)
        self.result = result

        if not result.is_success:
            report = self.analyzer.analyze(
                self.config.framework_dir, run_config.to_environment()
            )
            result.artifacts = report.artifacts
            self.logger.info(report.render())

        self.context.transition_to(TaskState.COLLECT_ARTIFACTS)
        try:
            self.collector.collect(run_config.output_path)
        except UITestTaskError as e:
            self.logger.warning(f"Artifact collection failed: {e.message}")
            log_issue(IssueType.WARNING, e.message)

        return result.exit_code

    @asynccontextmanager
    async def provisioned_user(
        self, session: aiohttp.ClientSession
    ) -> AsyncIterator[ProvisioningState]:
        """
        Provision the test user and guarantee cleanup on every exit path.

        Yields:
            Record of what provisioning changed
        """
        state = ProvisioningState()
        self.context.transition_to(TaskState.PROVISION_OR_SKIP)

        if not self.run_config.advanced_configured:
            missing = self.run_config.missing_advanced_inputs
            self.logger.info(
                "Advanced provisioning not configured, skipping",
                extra={"metadata": {"missing_inputs": missing}},
            )
        else:
            state.configured = True
            try:
                await self._provision(session, state)
            except Exception as e:
                error = e.outcome.error if isinstance(e, ProvisioningAborted) else e
                self.logger.warning(
                    render_diagnostic(error, "Provisioning failed, continuing without it")
                )
                log_issue(IssueType.WARNING, f"Test user provisioning failed: {error}")
                await self._safe_revert(session, state, "rollback")
                state.configured = False

        try:
            yield state
        finally:
            self.context.transition_to(TaskState.CLEANUP)
            if state.cleanup_eligible:
                await self._safe_revert(session, state, "cleanup")
            else:
                self.logger.info("No provisioning to clean up")

    async def _apply(
        self,
        state: ProvisioningState,
        kind: OperationKind,
        operation: Awaitable[Any],
    ) -> OperationOutcome:
        """Run one operation and apply the failure policy to its outcome."""
        try:
            value = await operation
            outcome = OperationOutcome(kind=kind, ok=True, value=value)
        except Exception as e:
            outcome = OperationOutcome(kind=kind, ok=False, error=e)
        state.record(outcome)

        if not outcome.ok:
            if outcome.is_fatal:
                raise ProvisioningAborted(outcome)
            self.logger.warning(f"{kind.value} failed, continuing: {outcome.error}")
        return outcome

    async def _client(
        self, session: aiohttp.ClientSession, state: ProvisioningState
    ) -> DataverseClient:
        run_config = self.run_config
        if state.token is None or state.token.is_expired:
            state.token = await get_access_token(
                session,
                run_config.tenant_id,
                run_config.client_id,
                run_config.client_secret.get_secret_value(),
                run_config.dynamics_url,
            )
        return DataverseClient(session, run_config.dynamics_url, state.token)

    async def _provision(self, session: aiohttp.ClientSession, state: ProvisioningState) -> None:
        run_config = self.run_config

        outcome = await self._apply(state, OperationKind.AUTHENTICATE, self._client(session, state))
        client: DataverseClient = outcome.value
        lookup = DirectoryLookup(client)
        provisioner = UserProvisioner(client)

        state.user = (
            await self._apply(state, OperationKind.LOOKUP, lookup.resolve_user(run_config.username))
        ).value

        # Business unit first: a role from another business unit is rejected
        business_unit = None
        if run_config.business_unit_name:
            business_unit = (
                await self._apply(
                    state,
                    OperationKind.LOOKUP,
                    lookup.resolve_business_unit(run_config.business_unit_name),
                )
            ).value
            current = (
                await self._apply(
                    state,
                    OperationKind.UPDATE_BUSINESS_UNIT,
                    provisioner.get_business_unit_id(state.user.id),
                )
            ).value
            if current and current.lower() == business_unit.id.lower():
                self.logger.info(f"User already in {business_unit}")
            else:
                await self._apply(
                    state,
                    OperationKind.UPDATE_BUSINESS_UNIT,
                    provisioner.update_business_unit(state.user.id, business_unit.id),
                )
                state.business_unit = business_unit
                state.previous_business_unit_id = current

        if run_config.role_name:
            role = (
                await self._apply(
                    state,
                    OperationKind.LOOKUP,
                    lookup.resolve_role(
                        run_config.role_name, business_unit.id if business_unit else None
                    ),
                )
            ).value
            removal = await self._apply(
                state,
                OperationKind.REMOVE_ROLES,
                provisioner.remove_all_security_roles(state.user.id),
            )
            if removal.ok:
                report = removal.value
                state.removed_roles = list(report.removed)
                state.role_was_preexisting = any(
                    r.id.lower() == role.id.lower() for r in report.removed + report.failed
                )
            assignment = await self._apply(
                state,
                OperationKind.ASSIGN_ROLE,
                provisioner.assign_security_role(state.user.id, role.id),
            )
            # Held before the run even when the role listing above failed
            if assignment.value.already_assigned:
                state.role_was_preexisting = True
            state.assigned_role = role

        if run_config.team_name:
            team = (
                await self._apply(
                    state, OperationKind.LOOKUP, lookup.resolve_team(run_config.team_name)
                )
            ).value
            added = (
                await self._apply(
                    state,
                    OperationKind.ADD_TO_TEAM,
                    provisioner.add_user_to_team(state.user.id, team.id),
                )
            ).value
            if added:
                state.joined_team = team

        self.logger.info("Test user provisioned", extra={"metadata": state.to_dict()})

    async def _safe_revert(
        self, session: aiohttp.ClientSession, state: ProvisioningState, phase: str
    ) -> None:
        """Revert provisioning changes; failures are logged, never raised."""
        if state.user is None:
            return
        try:
            await self._revert(session, state)
        except Exception as e:
            self.logger.warning(f"Provisioning {phase} incomplete: {e}")
            log_issue(IssueType.WARNING, f"Provisioning {phase} incomplete: {e}")

    async def _revert(self, session: aiohttp.ClientSession, state: ProvisioningState) -> None:
        client = await self._client(session, state)
        provisioner = UserProvisioner(client)
        user_id = state.user.id

        if state.role_assigned:
            outcome = await self._apply(
                state,
                OperationKind.REVOKE_ROLE,
                provisioner.revoke_security_role(user_id, state.assigned_role.id),
            )
            if outcome.ok:
                self.logger.info(f"Revoked {state.assigned_role} from the test user")
                state.assigned_role = None

        restore = [
            role
            for role in state.removed_roles
            if not (
                state.assigned_role is not None
                and state.role_was_preexisting
                and role.id.lower() == state.assigned_role.id.lower()
            )
        ]
        restored = 0
        for role in restore:
            outcome = await self._apply(
                state,
                OperationKind.RESTORE_ROLES,
                provisioner.restore_security_role(user_id, role.id),
            )
            if outcome.ok:
                state.removed_roles.remove(role)
                restored += 1
        if restore:
            self.logger.info(f"Restored {restored} of {len(restore)} previously held role(s)")

        if state.team_joined:
            if self.run_config.cleanup_team_membership:
                removed = (
                    await self._apply(
                        state,
                        OperationKind.REMOVE_FROM_TEAM,
                        provisioner.remove_user_from_team(user_id, state.joined_team.id),
                    )
                ).value
                if removed:
                    state.joined_team = None
            else:
                self.logger.info(
                    f"Team membership in {state.joined_team} is kept; "
                    "enable cleanupTeamMembership to remove it"
                )

        if state.business_unit_changed:
            self.logger.info(
                f"Business unit change to {state.business_unit} is not reverted",
                extra={"metadata": {"previous_business_unit_id": state.previous_business_unit_id}},
            )
