"""
Task inputs for a single run.

The RunConfiguration is resolved once at start-up from Azure DevOps task
inputs, command-line flags or a YAML/JSON file and is immutable afterwards.
It is serialized into the test runner's environment only when the runner is
launched.
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError as PydanticValidationError,
    field_validator,
)

from .exceptions import ValidationError


DEFAULT_FRAMEWORK_REPOSITORY = "https://github.com/itweedie/playwrightOnPowerPlatform.git"


class Browser(Enum):
    """Browsers the test framework defines a project for."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"
    CHROME = "chrome"
    MSEDGE = "msedge"


class TraceMode(Enum):
    """Playwright trace capture modes."""

    OFF = "off"
    ON = "on"
    RETAIN_ON_FAILURE = "retain-on-failure"
    ON_FIRST_RETRY = "on-first-retry"


# Field name -> Azure DevOps task input name
TASK_INPUTS: Dict[str, str] = {
    "tests_path": "testLocation",
    "browser": "browser",
    "trace_mode": "trace",
    "output_path": "outputLocation",
    "app_url": "appUrl",
    "app_name": "appName",
    "username": "o365Username",
    "password": "o365Password",
    "repository_url": "testRepo",
    "repository_ref": "testRepoRef",
    "tenant_id": "tenantId",
    "dynamics_url": "dynamicsUrl",
    "client_id": "clientId",
    "client_secret": "clientSecret",
    "role_name": "userRole",
    "team_name": "userTeam",
    "business_unit_name": "userBusinessUnit",
    "cleanup_team_membership": "cleanupTeamMembership",
}

_OPTIONAL_TEXT_FIELDS = [
    "app_url",
    "app_name",
    "username",
    "password",
    "repository_ref",
    "tenant_id",
    "dynamics_url",
    "client_id",
    "client_secret",
    "role_name",
    "team_name",
    "business_unit_name",
]


class RunConfiguration(BaseModel):
    """Immutable inputs for one task run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Required inputs
    tests_path: Path = Field(..., description="Directory holding the caller's tests")
    browser: Browser = Field(Browser.CHROMIUM, description="Single target browser")
    trace_mode: TraceMode = Field(TraceMode.OFF, description="Playwright trace mode")
    output_path: Path = Field(..., description="Where results are mirrored to")

    # Target application
    app_url: Optional[str] = Field(None, description="Application URL under test")
    app_name: Optional[str] = Field(None, description="Application display name")
    username: Optional[str] = Field(None, description="Test user principal name")
    password: Optional[SecretStr] = Field(None, description="Test user password")

    # Test framework source
    repository_url: str = Field(
        DEFAULT_FRAMEWORK_REPOSITORY, description="Test framework git repository"
    )
    repository_ref: Optional[str] = Field(
        None, description="Branch, tag or commit to check out"
    )

    # Advanced provisioning
    tenant_id: Optional[str] = Field(None, description="Entra tenant id")
    dynamics_url: Optional[str] = Field(None, description="Dataverse environment URL")
    client_id: Optional[str] = Field(None, description="App registration client id")
    client_secret: Optional[SecretStr] = Field(None, description="App registration secret")
    role_name: Optional[str] = Field(None, description="Security role to assign")
    team_name: Optional[str] = Field(None, description="Team to join")
    business_unit_name: Optional[str] = Field(None, description="Business unit to move to")
    cleanup_team_membership: bool = Field(
        False, description="Remove the team membership added by this run at cleanup"
    )

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Treat empty or whitespace-only inputs as not provided."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("repository_url", mode="before")
    @classmethod
    def default_repository(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_FRAMEWORK_REPOSITORY
        return v.strip()

    @field_validator("browser", "trace_mode", mode="before")
    @classmethod
    def normalise_choice(cls, v):
        # YAML reads a bare on/off as a boolean
        if isinstance(v, bool):
            return "on" if v else "off"
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("cleanup_team_membership", mode="before")
    @classmethod
    def blank_to_false(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return False
        return v

    @property
    def advanced_configured(self) -> bool:
        """Provisioning is active only when every required input is present."""
        return all(
            [
                self.tenant_id,
                self.dynamics_url,
                self.client_id,
                self.client_secret and self.client_secret.get_secret_value(),
                self.username,
            ]
        )

    @property
    def missing_advanced_inputs(self) -> List[str]:
        """Names of the required provisioning inputs that are empty."""
        values = {
            "tenantId": self.tenant_id,
            "dynamicsUrl": self.dynamics_url,
            "clientId": self.client_id,
            "clientSecret": self.client_secret.get_secret_value()
            if self.client_secret
            else None,
            "o365Username": self.username,
        }
        return [name for name, value in values.items() if not value]

    def secrets(self) -> List[str]:
        """Secret values that must be masked in all output."""
        return [
            secret.get_secret_value()
            for secret in (self.password, self.client_secret)
            if secret is not None and secret.get_secret_value()
        ]

    def to_environment(self) -> Dict[str, str]:
        """Variables exported to the test runner process."""
        env: Dict[str, str] = {}

        def put(name: str, value: Optional[str]) -> None:
            if value:
                env[name] = value

        put("APP_URL", self.app_url)
        put("APP_NAME", self.app_name)
        put("O365_USERNAME", self.username)
        put("O365_PASSWORD", self.password.get_secret_value() if self.password else None)

        if self.advanced_configured:
            put("TENANT_ID", self.tenant_id)
            put("DYNAMICS_URL", self.dynamics_url)
            put("CLIENT_ID", self.client_id)
            put("ROLE_NAME", self.role_name)
            put("TEAM_NAME", self.team_name)
            put("BUSINESS_UNIT_NAME", self.business_unit_name)

        return env

    def to_dict(self) -> Dict[str, Any]:
        """Masked dictionary for logging."""
        data = self.model_dump(mode="json")
        data["advanced_configured"] = self.advanced_configured
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RunConfiguration":
        """
        Build a configuration from field names or task input names.

        Raises:
            ValidationError: If required inputs are missing or invalid
        """
        by_input = {name.lower(): field for field, name in TASK_INPUTS.items()}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            field = key if key in TASK_INPUTS else by_input.get(key.lower())
            if field is None:
                raise ValidationError(
                    f"Unknown configuration key: {key}",
                    validation_type="run_config",
                    violations=[key],
                )
            values[field] = value

        try:
            return cls(**values)
        except PydanticValidationError as e:
            violations = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationError(
                "Invalid task inputs: " + "; ".join(violations),
                validation_type="run_config",
                violations=violations,
            ) from e

    @classmethod
    def from_task_inputs(
        cls, env: Optional[Mapping[str, str]] = None
    ) -> "RunConfiguration":
        """Read Azure DevOps task inputs exposed as INPUT_<NAME> variables."""
        return cls.from_mapping(read_task_inputs(env))

    @classmethod
    def from_file(cls, path: Path) -> "RunConfiguration":
        """Load inputs from a YAML or JSON file."""
        return cls.from_mapping(load_mapping(path))


def read_task_inputs(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Non-blank task inputs keyed by field name."""
    env = os.environ if env is None else env
    data: Dict[str, Any] = {}
    for field, input_name in TASK_INPUTS.items():
        value = env.get(f"INPUT_{input_name.upper()}")
        if value is not None and value.strip():
            data[field] = value
    return data


def load_mapping(path: Path) -> Dict[str, Any]:
    """
    Read a YAML or JSON mapping of inputs.

    Raises:
        ValidationError: If the file is missing, unparsable or not a mapping
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(
            f"Configuration file not found: {path}",
            validation_type="run_config",
            violations=[str(path)],
        )

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (ValueError, yaml.YAMLError) as e:
        raise ValidationError(
            f"Could not parse configuration file {path}: {e}",
            validation_type="run_config",
            violations=[str(path)],
        ) from e

    if not isinstance(data, dict):
        raise ValidationError(
            f"Configuration file must contain a mapping: {path}",
            validation_type="run_config",
            violations=[str(path)],
        )
    return data
