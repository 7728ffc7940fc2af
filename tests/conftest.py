"""Общие фикстуры: фейковые процессы, git и HTTP вместо настоящих инструментов."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import pytest

from aimlpipe.core.context import RunContext, RunWorkspace
from aimlpipe.core.core import PipelineCore
from aimlpipe.core.models import CommitInfo
from aimlpipe.core.resolver import resolve
from aimlpipe.core.services.credentials import CredentialStore
from aimlpipe.core.services.git_module import GitCheckout, LocalRepo, SourceFetchError
from aimlpipe.core.services.notify import TeamsNotifier
from aimlpipe.core.services.process import CommandResult, ProcessRunner
from aimlpipe.core.services.sonar import SonarQubeClient
from aimlpipe.exception import ToolInvocationError
from aimlpipe.settings import Settings

Effect = Callable[[Path, List[str]], None]


class FakeRunner(ProcessRunner):
    """
    Вместо запуска процессов записывает команды и отвечает по правилам.
    Правило матчится по префиксу команды; у первого элемента сравнивается
    только basename (venv/bin/pytest == pytest). Последнее добавленное правило главнее.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.spawned: List[Tuple[List[str], Dict[str, str]]] = []
        self.rules: List[Tuple[Tuple[str, ...], int, str, Optional[Effect]]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", effect: Optional[Effect] = None):
        self.rules.append((prefix, returncode, stdout, effect))
        return self

    @staticmethod
    def _matches(command: List[str], prefix: Sequence[str]) -> bool:
        if len(command) < len(prefix):
            return False
        if Path(command[0]).name != prefix[0]:
            return False
        return list(command[1:len(prefix)]) == list(prefix[1:])

    def ran(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if self._matches(c, prefix)]

    async def run(self, command, *, cwd=None, env=None, timeout=None, input=None, check=True):
        command = [str(c) for c in command]
        self.calls.append(command)
        self.inputs.append(input)

        returncode, stdout = 0, ""
        for prefix, rc, out, effect in reversed(self.rules):
            if self._matches(command, prefix):
                if effect is not None:
                    effect(Path(cwd), command)
                returncode, stdout = rc, out
                break

        result = CommandResult(command=command, returncode=returncode, stdout=stdout, stderr="")
        if check and returncode != 0:
            raise ToolInvocationError(command, returncode, stdout, "boom")
        return result

    async def spawn_detached(self, command, *, cwd=None, env=None, log_file=None) -> int:
        self.spawned.append(([str(c) for c in command], dict(env or {})))
        return 4242


DEFAULT_FILES = {
    "requirements.txt": "fastapi==0.110.0\n",
    "pyproject.toml": '[project]\nname = "svc"\nversion = "2.3.1"\n',
    "sonar-project.properties": "sonar.projectKey=svc\n",
    "Dockerfile": "FROM python:3.11-slim\n",
    "app_main.py": "print('hi')\n",
}

COMMIT = CommitInfo(sha="a1b2c3d" + "0" * 33, short_sha="a1b2c3d", author="Dev One")


class FakeGit(GitCheckout):
    def __init__(self, files: Optional[Dict[str, str]] = None, fail: bool = False) -> None:
        super().__init__()
        self.files = DEFAULT_FILES if files is None else files
        self.fail = fail
        self.calls: List[Tuple[str, str, Path, object]] = []

    async def clone(self, repo, branch, dest, credentials=None) -> LocalRepo:
        dest = Path(dest)
        self.calls.append((repo, branch, dest, credentials))
        if self.fail:
            raise SourceFetchError(repository=repo, branch=branch, logs=["fatal: repository not found"])
        dest.mkdir(parents=True)
        for name, content in self.files.items():
            (dest / name).write_text(content)
        return LocalRepo(repo_path=dest, branch=branch, commit=COMMIT, logs=[f"cloned {repo}"])


def write_coverage(cwd: Path, command: List[str]) -> None:
    (cwd / "coverage.xml").write_text('<coverage line-rate="0.9"/>')


def write_report_task(cwd: Path, command: List[str]) -> None:
    scannerwork = cwd / ".scannerwork"
    scannerwork.mkdir(exist_ok=True)
    (scannerwork / "report-task.txt").write_text(
        "projectKey=svc\nserverUrl=http://sonar.test\nceTaskId=TASK-1\n"
    )


def write_trivy_json(cwd: Path, command: List[str]) -> None:
    (cwd / "trivy-image-report.json").write_text("{}")


def happy_runner() -> FakeRunner:
    runner = FakeRunner()
    runner.on("pytest", effect=write_coverage)
    runner.on("pip-audit", stdout='{"dependencies": []}')
    runner.on("trivy", "fs", stdout="no findings")
    runner.on("checkov", stdout="{}")
    runner.on("trivy", "image", "--format", effect=write_trivy_json)
    runner.on("sonar-scanner", effect=write_report_task)
    runner.on("aws", "sts", stdout="123456789012\n")
    runner.on("aws", "ecr", "get-login-password", stdout="ecr-pass\n")
    return runner


def sonar_transport(gate_status: str = "OK", task_status: str = "SUCCESS") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/ce/task":
            return httpx.Response(
                200, json={"task": {"id": "TASK-1", "status": task_status, "analysisId": "AN-1"}}
            )
        if request.url.path == "/api/qualitygates/project_status":
            return httpx.Response(200, json={"projectStatus": {"status": gate_status}})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class WebhookRecorder:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.cards: List[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.cards.append(json.loads(request.content))
        return httpx.Response(self.status_code)

    def factory(self, url: str) -> TeamsNotifier:
        return TeamsNotifier(url, transport=httpx.MockTransport(self.handler))


ENVIRON = {
    "GIT_ACCESS_USR": "ci-bot",
    "GIT_ACCESS_PSW": "git-token",
    "DOCKERHUB_CREDENTIALS_USR": "dockeruser",
    "DOCKERHUB_CREDENTIALS_PSW": "docker-pass",
    "SONAR_TOKEN": "sonar-secret",
}


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        workdir=tmp_path / "work",
        quality_gate_poll_interval=0,
        notify_webhook_url="https://hooks.example.test/webhook",
        sonar_servers={"SonarQube-Server": "http://sonar.test"},
    )


@pytest.fixture
def credentials() -> CredentialStore:
    return CredentialStore(dict(ENVIRON))


@pytest.fixture
def webhook() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def make_core(settings, credentials, webhook):
    def _make(
        runner: Optional[FakeRunner] = None,
        git: Optional[FakeGit] = None,
        gate_status: str = "OK",
        settings_override: Optional[Settings] = None,
    ) -> PipelineCore:
        transport = sonar_transport(gate_status)
        return PipelineCore(
            settings=settings_override or settings,
            runner=runner or happy_runner(),
            git=git or FakeGit(),
            credentials=credentials,
            sonar_factory=lambda host, token: SonarQubeClient(
                host, token, poll_interval=0, transport=transport
            ),
            notifier_factory=webhook.factory,
        )

    return _make


@pytest.fixture
def make_context(settings, credentials):
    def _make(overrides=None, runner=None, settings_override=None) -> RunContext:
        active = settings_override or settings
        config = resolve(overrides or {})
        return RunContext(
            config=config,
            settings=active,
            workspace=RunWorkspace.create(active.workdir, config.service_name),
            runner=runner or FakeRunner(),
            git=FakeGit(),
            credentials=credentials,
            sonar_factory=lambda host, token: SonarQubeClient(host, token, transport=sonar_transport()),
        )

    return _make
