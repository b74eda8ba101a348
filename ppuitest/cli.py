"""
Main CLI interface for the Power Platform UI test task.

Provides commands to run the task, inspect the resolved configuration and
show version information.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .core.config import Config
from .core.diagnostics import render_diagnostic
from .core.exceptions import UITestTaskError
from .core.logging_config import register_secrets, setup_logging
from .core.pipeline import TaskResult, complete_task
from .core.run_config import (
    Browser,
    RunConfiguration,
    TraceMode,
    load_mapping,
    read_task_inputs,
)
from .core.workflow import RunContext
from .task import UITestTask


# argparse dest -> RunConfiguration field
FLAG_FIELDS = {
    "test_location": "tests_path",
    "browser": "browser",
    "trace": "trace_mode",
    "output_location": "output_path",
    "app_url": "app_url",
    "app_name": "app_name",
    "username": "username",
    "password": "password",
    "test_repo": "repository_url",
    "test_repo_ref": "repository_ref",
    "tenant_id": "tenant_id",
    "dynamics_url": "dynamics_url",
    "client_id": "client_id",
    "client_secret": "client_secret",
    "role": "role_name",
    "team": "team_name",
    "business_unit": "business_unit_name",
    "cleanup_team_membership": "cleanup_team_membership",
}


def load_run_config(args: argparse.Namespace) -> RunConfiguration:
    """
    Resolve the run configuration.

    Flags override values from --config-file, or from INPUT_* task inputs when
    no file is given.
    """
    if getattr(args, "config_file", None):
        data: Dict[str, Any] = dict(load_mapping(args.config_file))
    else:
        data = read_task_inputs()

    for dest, field in FLAG_FIELDS.items():
        value = getattr(args, dest, None)
        if value is not None:
            data[field] = value
    return RunConfiguration.from_mapping(data)


def cmd_run(args: argparse.Namespace) -> int:
    """Run the UI test task."""
    config = Config.from_env()
    context = RunContext()
    setup_logging(config, context.run_id)

    try:
        run_config = load_run_config(args)
        register_secrets(run_config.secrets())
        config.validate()
    except UITestTaskError as e:
        print(render_diagnostic(e, "Invalid configuration"), file=sys.stderr)
        complete_task(TaskResult.FAILED, e.message)
        return 1

    task = UITestTask(run_config, config=config, context=context)
    exit_code = asyncio.run(task.run())

    if exit_code == 0:
        complete_task(TaskResult.SUCCEEDED, "UI tests passed")
    else:
        complete_task(TaskResult.FAILED, f"UI tests failed with exit code {exit_code}")
    return exit_code


def cmd_check_config(args: argparse.Namespace) -> int:
    """Print the resolved configuration with secrets masked."""
    try:
        run_config = load_run_config(args)
        config = Config.from_env()
        config.validate()
    except UITestTaskError as e:
        print(render_diagnostic(e, "Invalid configuration"))
        return 1

    print(json.dumps({"settings": config.to_dict(), "inputs": run_config.to_dict()}, indent=2))
    print()
    if run_config.advanced_configured:
        print("Advanced provisioning: active")
    else:
        missing = ", ".join(run_config.missing_advanced_inputs)
        print(f"Advanced provisioning: skipped (missing {missing})")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    print(f"ppuitest {__version__}")
    if args.verbose:
        config = Config.from_env()
        print()
        print("System Information:")
        print(f"  Python: {sys.version}")
        print(f"  Platform: {sys.platform}")
        print(f"  Node version: {config.node_version}")
        print(f"  Work directory: {config.work_dir}")
    return 0


def _add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config-file",
        help="YAML or JSON file of task inputs (default: INPUT_* environment variables)",
    )
    parser.add_argument("--test-location", help="Directory holding the tests to run")
    parser.add_argument(
        "--browser",
        choices=[b.value for b in Browser],
        help="Browser to run the tests in",
    )
    parser.add_argument(
        "--trace",
        choices=[t.value for t in TraceMode],
        help="Playwright trace mode",
    )
    parser.add_argument("--output-location", help="Where results are copied to")
    parser.add_argument("--app-url", help="URL of the application under test")
    parser.add_argument("--app-name", help="Name of the application under test")
    parser.add_argument("--username", help="Test user principal name")
    parser.add_argument("--password", help="Test user password")
    parser.add_argument("--test-repo", help="Test framework git repository")
    parser.add_argument("--test-repo-ref", help="Branch, tag or commit of the framework")

    advanced = parser.add_argument_group("advanced provisioning")
    advanced.add_argument("--tenant-id", help="Entra tenant id")
    advanced.add_argument("--dynamics-url", help="Dataverse environment URL")
    advanced.add_argument("--client-id", help="App registration client id")
    advanced.add_argument("--client-secret", help="App registration client secret")
    advanced.add_argument("--role", help="Security role to assign to the test user")
    advanced.add_argument("--team", help="Team to add the test user to")
    advanced.add_argument("--business-unit", help="Business unit to move the test user to")
    advanced.add_argument(
        "--cleanup-team-membership",
        action="store_true",
        default=None,
        help="Remove the team membership added by this run during cleanup",
    )


def create_main_parser() -> argparse.ArgumentParser:
    """Create main CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ppuitest",
        description="Run Playwright UI tests against a Power Platform application",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ppuitest run --test-location tests --output-location out --browser chromium
  ppuitest run --config-file ppuitest.yml
  ppuitest check-config --config-file ppuitest.yml
  ppuitest version --verbose
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the UI test task")
    _add_input_arguments(run_parser)
    run_parser.set_defaults(func=cmd_run)

    check_parser = subparsers.add_parser(
        "check-config", help="Show the resolved configuration with secrets masked"
    )
    _add_input_arguments(check_parser)
    check_parser.set_defaults(func=cmd_check_config)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show detailed version information"
    )
    version_parser.set_defaults(func=cmd_version)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_main_parser()

    if args is None:
        args = sys.argv[1:]

    parsed_args = parser.parse_args(args)

    if not hasattr(parsed_args, "func"):
        parser.print_help()
        return 1

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
