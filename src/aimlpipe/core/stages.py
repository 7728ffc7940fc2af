"""
Стадии пайплайна и их порядок.

Каждая стадия это корутина handler(ctx). Провал стадии = исключение из
aimlpipe.exception; фатален он или нет, решает continue_on_error стадии,
а не "|| true" внутри команды.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from aimlpipe.core import animation, ci_scripts
from aimlpipe.core.context import RunContext
from aimlpipe.core.services.sonar import read_report_task
from aimlpipe.core.version import read_version
from aimlpipe.exception import (
    BuildError,
    ConfigurationError,
    EnvironmentSetupError,
    QualityGateError,
    RegistryError,
    ToolInvocationError,
)
from aimlpipe.settings import Settings

Handler = Callable[[RunContext], Awaitable[None]]

COVERAGE_FILE = "coverage.xml"
SETUP_SCRIPT = "setup_environment.sh"
SONAR_PROPERTIES = "sonar-project.properties"
COVERAGE_PROPERTY = "sonar.python.coverage.reportPaths"


@dataclass(frozen=True)
class Stage:
    name: str
    handler: Handler
    continue_on_error: bool = False
    when: Optional[Callable[[RunContext], bool]] = None


@dataclass(frozen=True)
class ParallelGroup:
    name: str
    members: Sequence[Stage]


Step = Union[Stage, ParallelGroup]


def _write(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


# ---------- 1. checkout ----------

async def checkout(ctx: RunContext) -> None:
    config = ctx.config
    credentials = ctx.credentials.find_user_pass(config.git_credentials)
    if credentials is None:
        ctx.warn(
            f"Credentials {config.git_credentials!r} не найдены — клонируем без авторизации."
        )

    if ctx.settings.show_spinner:
        cloned = await animation.run(
            ctx.git.clone,
            config.repo,
            config.branch,
            ctx.checkout_dir,
            credentials,
            text=f"Клонирование репозитория {config.repo}",
        )
    else:
        cloned = await ctx.git.clone(config.repo, config.branch, ctx.checkout_dir, credentials)

    ctx.logs.extend(cloned.logs)
    ctx.commit = cloned.commit


# ---------- 2. setup environment ----------

async def setup_environment(ctx: RunContext) -> None:
    script = ctx.checkout_dir / SETUP_SCRIPT
    if not script.is_file():
        ctx.log(f"{SETUP_SCRIPT} not found, skipping...")
        return

    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    result = await ctx.sh([f"./{SETUP_SCRIPT}"], check=False)
    if not result.ok:
        raise EnvironmentSetupError(
            f"{SETUP_SCRIPT} exited with code {result.returncode}",
            logs=[result.stdout, result.stderr],
        )


# ---------- 3. install dependencies ----------

async def install_dependencies(ctx: RunContext) -> None:
    venv_dir = ctx.venv_dir
    if not (venv_dir / "bin" / "python").exists():
        ctx.log(f"Создаём virtualenv {venv_dir} ({ctx.config.python_bin})")
        await ctx.sh(ci_scripts.make_venv_command(ctx.config.python_bin, venv_dir))

    has_requirements = (ctx.checkout_dir / "requirements.txt").is_file()
    if not has_requirements:
        ctx.warn("requirements.txt не найден — ставим только инструменты проверки.")

    for command in ci_scripts.make_install_commands(venv_dir, has_requirements):
        await ctx.sh(command)


# ---------- 4. parallel quality & security ----------

async def unit_tests(ctx: RunContext) -> None:
    result = await ctx.sh(ci_scripts.make_tests_command(ctx.venv_dir, COVERAGE_FILE), check=False)
    coverage = ctx.checkout_dir / COVERAGE_FILE
    if coverage.is_file():
        ctx.coverage_path = coverage
    ctx.archive("unit-tests", COVERAGE_FILE)
    if not result.ok:
        raise ToolInvocationError(result.command, result.returncode, result.stdout, result.stderr)


async def dependency_audit(ctx: RunContext) -> None:
    if not (ctx.checkout_dir / "requirements.txt").is_file():
        ctx.warn("requirements.txt не найден — аудит зависимостей пропущен.")
        return

    result = await ctx.sh(ci_scripts.make_audit_command(ctx.venv_dir), check=False)
    _write(ctx.checkout_dir / "pip-audit.json", result.stdout)
    ctx.archive("dependency-audit", "pip-audit.json")
    if not result.ok:
        raise ToolInvocationError(result.command, result.returncode, result.stdout, result.stderr)


async def static_scan(ctx: RunContext) -> None:
    threshold = ctx.settings.scan_fail_severity
    failures: List[ToolInvocationError] = []

    report_cmd, critical_cmd = ci_scripts.make_trivy_fs_commands(threshold)
    outputs = [
        (report_cmd, "trivy-fs-report.txt"),
        (critical_cmd, "trivy-fs-critical.txt"),
        (ci_scripts.make_checkov_command(ctx.venv_dir, threshold), "checkov-report.json"),
    ]
    # Все сканеры отрабатывают до конца, даже если один из них упал
    for command, report_name in outputs:
        result = await ctx.sh(command, check=False)
        _write(ctx.checkout_dir / report_name, result.stdout)
        if not result.ok:
            failures.append(
                ToolInvocationError(result.command, result.returncode, result.stdout, result.stderr)
            )

    ctx.archive("static-scan", *(name for _, name in outputs))
    if failures:
        raise failures[0]


async def image_build(ctx: RunContext) -> None:
    version = read_version(ctx.checkout_dir / "pyproject.toml")
    image_ref = f"{ctx.config.docker_image_name}:{version}"
    ctx.version = version
    ctx.log(f"Building Docker image: {image_ref}")

    try:
        await ctx.sh(ci_scripts.make_docker_build_command(image_ref))
    except ToolInvocationError as e:
        raise BuildError(f"docker build failed for {image_ref}: {e.description}") from e
    ctx.image_ref = image_ref

    threshold = ctx.settings.scan_fail_severity
    text_cmd, json_cmd = ci_scripts.make_trivy_image_commands(image_ref, threshold)
    text_result = await ctx.sh(text_cmd, check=False)
    _write(ctx.checkout_dir / "trivy-image-scan.txt", text_result.stdout)
    json_result = await ctx.sh(json_cmd, check=False)
    ctx.archive("image-build", "trivy-image-scan.txt", "trivy-image-report.json")

    if not json_result.ok:
        ctx.warn(f"trivy image (json) завершился с кодом {json_result.returncode}")
    if not text_result.ok:
        error = ToolInvocationError(
            text_result.command, text_result.returncode, text_result.stdout, text_result.stderr
        )
        if threshold is not None:
            raise error
        ctx.warn(f"Сканирование образа: {error.description}")


# ---------- 5. SonarQube analysis ----------

def _sonar_host(ctx: RunContext) -> str:
    host = ctx.settings.sonar_host_url(ctx.config.sonarqube_env)
    if not host:
        raise ConfigurationError(
            f"SonarQube environment {ctx.config.sonarqube_env!r} is not configured "
            f"(known: {sorted(ctx.settings.sonar_servers)})"
        )
    return host


async def sonarqube_analysis(ctx: RunContext) -> None:
    host = _sonar_host(ctx)
    token = ctx.credentials.secret(ctx.settings.sonar_token_credentials)

    properties = ctx.checkout_dir / SONAR_PROPERTIES
    if not properties.is_file():
        raise ConfigurationError(f"{SONAR_PROPERTIES} not found!")

    if ctx.coverage_path is None:
        ctx.warn(f"{COVERAGE_FILE} не найден — анализ уйдёт без покрытия.")

    content = properties.read_text(encoding="utf-8")
    if COVERAGE_PROPERTY not in content:
        separator = "" if not content or content.endswith("\n") else "\n"
        _write(properties, f"{content}{separator}{COVERAGE_PROPERTY}={COVERAGE_FILE}\n")
        ctx.log(f"Добавлен {COVERAGE_PROPERTY}={COVERAGE_FILE} в {SONAR_PROPERTIES}")

    command = ci_scripts.make_sonar_command(ctx.settings.sonar_scanner_bin, host, token)
    await ctx.sh(command, display=" ".join(command).replace(token, "***"))


# ---------- 6. quality gate ----------

async def quality_gate(ctx: RunContext) -> None:
    task = read_report_task(ctx.checkout_dir)
    host = task.get("serverUrl") or _sonar_host(ctx)
    token = ctx.credentials.find_secret(ctx.settings.sonar_token_credentials)
    timeout = ctx.settings.quality_gate_timeout

    ctx.log(f"Ждём quality gate (task {task['ceTaskId']}, до {timeout:g}s)...")
    async with ctx.sonar_factory(host, token) as client:
        if ctx.settings.show_spinner:
            verdict = await animation.run(
                client.wait_for_quality_gate, task["ceTaskId"], timeout, text="Quality gate"
            )
        else:
            verdict = await client.wait_for_quality_gate(task["ceTaskId"], timeout)

    ctx.quality_gate = verdict
    if not verdict.ok:
        raise QualityGateError(verdict.status)
    ctx.log("SonarQube Quality Gate passed successfully")


# ---------- 7. registry push ----------

async def _push_dockerhub(ctx: RunContext, image_ref: str, version: str) -> str:
    creds = ctx.credentials.user_pass(ctx.config.dockerhub_credentials)
    target = f"{creds.username}/{ctx.config.docker_image_name}"

    ctx.log("Logging into DockerHub...")
    await ctx.sh(ci_scripts.make_docker_login_command(creds.username), input=creds.password)
    try:
        for tag in (version, "latest"):
            await ctx.sh(ci_scripts.make_docker_tag_command(image_ref, f"{target}:{tag}"))
        for tag in (version, "latest"):
            await ctx.sh(ci_scripts.make_docker_push_command(f"{target}:{tag}"))
    finally:
        await ctx.sh(ci_scripts.make_docker_logout_command(), check=False)
    return f"{target}:{version}"


async def _push_ecr(ctx: RunContext, image_ref: str, version: str) -> str:
    settings = ctx.settings
    repository = f"{settings.ecr_repository_prefix}/{ctx.config.docker_image_name}"
    commands = ci_scripts.make_ecr_commands(repository, settings.aws_region)

    account = (await ctx.sh(commands["account"])).stdout.strip()
    registry = f"{account}.dkr.ecr.{settings.aws_region}.amazonaws.com"
    target = f"{registry}/{repository}"

    if not (await ctx.sh(commands["describe"], check=False)).ok:
        ctx.log(f"ECR repository {repository} не найден — создаём.")
        await ctx.sh(commands["create"])

    password = (await ctx.sh(commands["password"])).stdout.strip()
    await ctx.sh(ci_scripts.make_docker_login_command("AWS", registry), input=password)
    try:
        for tag in (version, "latest"):
            await ctx.sh(ci_scripts.make_docker_tag_command(image_ref, f"{target}:{tag}"))
        for tag in (version, "latest"):
            await ctx.sh(ci_scripts.make_docker_push_command(f"{target}:{tag}"))
    finally:
        await ctx.sh(ci_scripts.make_docker_logout_command(registry), check=False)

    scan = await ctx.sh(commands["scan"], check=False)
    if not scan.ok:
        ctx.warn(f"ECR image scan не запущен: {scan.stderr.strip()}")
    return f"{target}:{version}"


async def registry_push(ctx: RunContext) -> None:
    if ctx.image_ref is None or ctx.version is None:
        raise BuildError("No Docker image was built, nothing to push")

    push = _push_ecr if ctx.settings.registry == "ecr" else _push_dockerhub
    try:
        ctx.pushed_image = await push(ctx, ctx.image_ref, ctx.version)
    except ToolInvocationError as e:
        raise RegistryError(f"Push to {ctx.settings.registry} failed: {e.description}") from e
    ctx.log(f"Образ опубликован: {ctx.pushed_image}")


# ---------- 8. run locally ----------

async def run_locally(ctx: RunContext) -> None:
    config = ctx.config
    if config.port is None:
        raise ConfigurationError(f"Service {config.service_name!r} has no PORT to run on")

    if ctx.settings.local_run_mode == "docker":
        if ctx.image_ref is None or ctx.version is None:
            raise BuildError("No Docker image was built, nothing to run")
        container = f"{config.service_name}-{ctx.version}"
        remove_cmd, run_cmd = ci_scripts.make_docker_run_commands(container, config.port, ctx.image_ref)
        await ctx.sh(remove_cmd, check=False)
        await ctx.sh(run_cmd)
        ctx.log(f"Контейнер {container} запущен на порту {config.port}")
        return

    if not config.entrypoint:
        raise ConfigurationError(f"Service {config.service_name!r} has no ENTRYPOINT to run")
    entrypoint = ctx.checkout_dir / config.entrypoint
    if not entrypoint.is_file():
        raise ConfigurationError(f"Entrypoint {config.entrypoint} not found in repository")

    python = ci_scripts.venv_tool(ctx.venv_dir, "python")
    log_file = ctx.workspace.artifacts_dir / f"{config.service_name}.log"
    pid = await ctx.runner.spawn_detached(
        [python, config.entrypoint],
        cwd=ctx.checkout_dir,
        env={
            "PORT": str(config.port),
            "PATH": f"{ctx.venv_dir / 'bin'}{os.pathsep}{os.environ.get('PATH', '')}",
        },
        log_file=log_file,
    )
    # Процесс живёт в checkout, рабочую папку не удаляем
    ctx.keep_workspace = True
    ctx.log(f"{config.entrypoint} запущен (pid {pid}) на порту {config.port}, лог: {log_file}")


def build_plan(settings: Settings) -> List[Step]:
    """
    Фиксированный порядок стадий. Сканеры фатальны только если задан порог
    критичности scan_fail_severity.
    """
    scans_best_effort = settings.scan_fail_severity is None
    return [
        Stage("checkout", checkout),
        Stage("setup-environment", setup_environment, continue_on_error=True),
        Stage("install-dependencies", install_dependencies),
        ParallelGroup(
            "quality-and-security",
            [
                Stage("unit-tests", unit_tests, continue_on_error=True),
                Stage("dependency-audit", dependency_audit, continue_on_error=scans_best_effort),
                Stage("static-scan", static_scan, continue_on_error=scans_best_effort),
                Stage("image-build", image_build),
            ],
        ),
        Stage("sonarqube-analysis", sonarqube_analysis),
        Stage("quality-gate", quality_gate),
        Stage("registry-push", registry_push),
        Stage("run-locally", run_locally, when=lambda ctx: ctx.config.run_locally),
    ]
