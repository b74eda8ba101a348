"""
Pytest configuration and shared fixtures for the UI test task.

Provides a fake aiohttp-compatible session that records Dataverse and token
requests, a fake command runner that records subprocess invocations, and
common configuration objects.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest

from ppuitest.core.config import Config
from ppuitest.core.logging_config import get_secret_filter
from ppuitest.core.run_config import RunConfiguration
from ppuitest.dataverse.client import DataverseClient
from ppuitest.dataverse.models import AccessToken
from ppuitest.environment.commands import CommandResult, CommandRunner


DATAVERSE_URL = "https://contoso.crm.dynamics.com"
API_ROOT = f"{DATAVERSE_URL}/api/data/v9.2/"


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse used as a context manager."""

    def __init__(self, status: int = 200, body: Any = None, chunks: Optional[List[bytes]] = None):
        self.status = status
        if body is None:
            self._text = ""
        elif isinstance(body, str):
            self._text = body
        else:
            self._text = json.dumps(body)
        self.content = FakeContent(chunks or [])

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeContent:
    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks

    async def iter_chunked(self, size: int):
        for chunk in self.chunks:
            yield chunk


@dataclass
class RecordedRequest:
    method: str
    url: str
    kwargs: Dict[str, Any]

    @property
    def json(self) -> Optional[Dict[str, Any]]:
        return self.kwargs.get("json")

    @property
    def headers(self) -> Dict[str, str]:
        return self.kwargs.get("headers") or {}

    @property
    def params(self) -> Dict[str, str]:
        return self.kwargs.get("params") or {}

    @property
    def path(self) -> str:
        return self.url[len(API_ROOT):] if self.url.startswith(API_ROOT) else self.url


@dataclass
class Route:
    method: str
    fragment: str
    responses: List[FakeResponse]
    hits: int = 0

    def matches(self, method: str, url: str) -> bool:
        return self.method == method and self.fragment in url

    def next_response(self) -> FakeResponse:
        index = min(self.hits, len(self.responses) - 1)
        self.hits += 1
        return self.responses[index]


class FakeSession:
    """
    Records requests and answers them from registered routes.

    A route matches on HTTP method and a URL substring; the first registered
    match wins. A route given several responses returns them in order and
    then repeats the last one. Unmatched requests get an empty 200.
    """

    def __init__(self):
        self.requests: List[RecordedRequest] = []
        self.routes: List[Route] = []
        self.closed = False

    def add(self, method: str, fragment: str, *responses: Union[FakeResponse, Tuple[int, Any]]) -> Route:
        built = [
            r if isinstance(r, FakeResponse) else FakeResponse(r[0], r[1])
            for r in responses
        ] or [FakeResponse(204)]
        route = Route(method, fragment, built)
        self.routes.append(route)
        return route

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        # Query options are recorded unencoded so routes can match on them
        params = kwargs.get("params")
        if params:
            url += "?" + "&".join(f"{key}={value}" for key, value in params.items())
        self.requests.append(RecordedRequest(method, url, kwargs))
        for route in self.routes:
            if route.matches(method, url):
                return route.next_response()
        return FakeResponse(200, {})

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self.request("GET", url, **kwargs)

    def calls(self, method: Optional[str] = None, fragment: str = "") -> List[RecordedRequest]:
        return [
            r for r in self.requests
            if (method is None or r.method == method) and fragment in r.url
        ]

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True
        return False


@dataclass
class RunCall:
    args: List[str]
    cwd: Optional[Path]
    env: Dict[str, str]
    capture: bool


class FakeRunner(CommandRunner):
    """
    Command runner that records invocations instead of spawning processes.

    ``results`` maps an argument prefix tuple to an exit code, a
    CommandResult, an exception instance to raise, or a callable receiving
    the RunCall and returning one of those.
    """

    def __init__(self, results: Optional[Dict[Tuple[str, ...], Any]] = None, available=("git", "node", "npm", "npx")):
        super().__init__()
        self.results = dict(results or {})
        self.available = set(available)
        self.calls: List[RunCall] = []

    def which(self, command: str) -> Optional[str]:
        return f"/usr/bin/{command}" if command in self.available else None

    def run(self, args, cwd=None, env=None, capture=True) -> CommandResult:
        call = RunCall(list(args), cwd, dict(env or {}), capture)
        self.calls.append(call)

        outcome: Any = None
        for prefix, value in self.results.items():
            if tuple(args[: len(prefix)]) == prefix:
                outcome = value
                break

        if callable(outcome) and not isinstance(outcome, CommandResult):
            outcome = outcome(call)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, CommandResult):
            return outcome
        if isinstance(outcome, int):
            return CommandResult(args=list(args), exit_code=outcome)

        stdout = "v20.11.1\n" if args[:2] == ["node", "--version"] else ""
        return CommandResult(args=list(args), exit_code=0, stdout=stdout)

    def commands(self) -> List[List[str]]:
        return [c.args for c in self.calls]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Run every test outside any pipeline, with no registered secrets."""
    for name in ("TF_BUILD", "CI", "BUILD_BUILDID", "SYSTEM_JOBATTEMPT",
                 "PPUITEST_LOG_LEVEL", "PPUITEST_LOG_FORMAT",
                 "PPUITEST_WORK_DIR", "PPUITEST_NODE_VERSION"):
        monkeypatch.delenv(name, raising=False)
    get_secret_filter().clear()
    yield
    get_secret_filter().clear()


@pytest.fixture
def config(tmp_path) -> Config:
    """Configuration rooted in a temporary work directory."""
    work_dir = tmp_path / "work"
    return Config(work_dir=work_dir, logs_dir=work_dir / "logs")


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def token() -> AccessToken:
    return AccessToken(value="token-abc", expires_in=3600)


@pytest.fixture
def dataverse_client(fake_session, token) -> DataverseClient:
    return DataverseClient(fake_session, DATAVERSE_URL, token)


@pytest.fixture
def tests_source(tmp_path) -> Path:
    """A directory holding two Playwright specs."""
    source = tmp_path / "ui-tests"
    (source / "forms").mkdir(parents=True)
    (source / "login.spec.ts").write_text("test('login', async () => {});\n")
    (source / "forms" / "account.spec.ts").write_text("test('account', async () => {});\n")
    return source


@pytest.fixture
def basic_inputs(tmp_path, tests_source) -> Dict[str, Any]:
    """Task inputs without advanced provisioning."""
    return {
        "tests_path": str(tests_source),
        "browser": "chromium",
        "trace_mode": "off",
        "output_path": str(tmp_path / "out"),
        "app_url": "https://apps.powerapps.com/play/app-1",
        "app_name": "Sales Hub",
        "username": "tester@contoso.com",
        "password": "P@ssw0rd!",
    }


@pytest.fixture
def advanced_inputs(basic_inputs) -> Dict[str, Any]:
    """Task inputs with every provisioning input present."""
    return {
        **basic_inputs,
        "tenant_id": "tenant-1",
        "dynamics_url": "contoso.crm.dynamics.com/",
        "client_id": "client-1",
        "client_secret": "s3cr3t-value",
        "role_name": "Salesperson",
        "team_name": "Sales Team",
        "business_unit_name": "Sales",
    }


@pytest.fixture
def basic_run_config(basic_inputs) -> RunConfiguration:
    return RunConfiguration.from_mapping(basic_inputs)


@pytest.fixture
def advanced_run_config(advanced_inputs) -> RunConfiguration:
    return RunConfiguration.from_mapping(advanced_inputs)


def add_token_route(session: FakeSession, status: int = 200, body: Any = None) -> Route:
    if body is None:
        body = {"access_token": "token-abc", "expires_in": 3599, "token_type": "Bearer"}
    return session.add("POST", "login.microsoftonline.com", (status, body))


def add_provisioning_routes(
    session: FakeSession,
    existing_roles: Optional[List[Tuple[str, str]]] = None,
    current_business_unit: str = "bu-root",
) -> None:
    """Register a successful Dataverse environment for the advanced inputs."""
    add_token_route(session)
    session.add("GET", "/systemusers?", (200, {"value": [{"systemuserid": "user-1", "domainname": "tester@contoso.com"}]}))
    session.add("GET", "/businessunits?", (200, {"value": [{"businessunitid": "bu-sales", "name": "Sales"}]}))
    session.add("GET", "/systemusers(user-1)?$select=_businessunitid_value",
                (200, {"_businessunitid_value": current_business_unit}))
    session.add("PATCH", "/systemusers(user-1)", (204, None))
    session.add("GET", "/roles?", (200, {"value": [{"roleid": "role-sales", "name": "Salesperson"}]}))
    roles = existing_roles if existing_roles is not None else [("role-basic", "Basic User")]
    session.add(
        "GET",
        "/systemusers(user-1)/systemuserroles_association?",
        (200, {"value": [{"roleid": rid, "name": name} for rid, name in roles]}),
    )
    session.add("GET", "/teams?", (200, {"value": [{"teamid": "team-1", "name": "Sales Team"}]}))
