# core/ci_scripts.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from aimlpipe.settings import Severity

Command = List[str]

SECURITY_TOOLS = ["pytest", "pytest-cov", "pip-audit", "checkov"]
DEFAULT_SEVERITIES = ["HIGH", "CRITICAL"]


def venv_tool(venv_dir: Path, tool: str) -> str:
    """
    Путь до бинарника внутри venv (pip, pytest, pip-audit...).
    """
    return str(Path(venv_dir) / "bin" / tool)


def _severities(threshold: Optional[Severity]) -> str:
    return ",".join(threshold.and_above() if threshold else DEFAULT_SEVERITIES)


# =====================
# Python / venv / pip
# =====================

def make_venv_command(python_bin: str, venv_dir: Path) -> Command:
    return [python_bin, "-m", "venv", str(venv_dir)]


def make_install_commands(venv_dir: Path, has_requirements: bool = True) -> List[Command]:
    """
    Установка зависимостей сервиса и инструментов проверки в venv.
    requirements.txt ставим только если он есть в репозитории.
    """
    python = venv_tool(venv_dir, "python")
    cmds: List[Command] = [[python, "-m", "pip", "install", "--upgrade", "pip"]]
    if has_requirements:
        cmds.append([python, "-m", "pip", "install", "-r", "requirements.txt"])
    cmds.append([python, "-m", "pip", "install", *SECURITY_TOOLS])
    return cmds


def make_tests_command(venv_dir: Path, coverage_file: str = "coverage.xml") -> Command:
    return [
        venv_tool(venv_dir, "pytest"),
        "--cov=.",
        f"--cov-report=xml:{coverage_file}",
        "--cov-report=term",
    ]


def make_audit_command(venv_dir: Path) -> Command:
    """
    pip-audit сам по себе выходит с 1 при найденных уязвимостях;
    фатально это или нет, решает политика стадии.
    """
    return [venv_tool(venv_dir, "pip-audit"), "-r", "requirements.txt", "-f", "json"]


# =========================
# Сканеры: trivy / checkov
# =========================

def make_trivy_fs_commands(threshold: Optional[Severity] = None) -> List[Command]:
    """
    Два прогона trivy fs:
      - полный отчёт, никогда не падает;
      - только значимые находки; с порогом exit-code 1.
    """
    return [
        ["trivy", "fs", "--exit-code", "0", "--no-progress", "."],
        [
            "trivy", "fs",
            "--exit-code", "1" if threshold else "0",
            "--severity", _severities(threshold),
            "--no-progress", ".",
        ],
    ]


def make_checkov_command(venv_dir: Path, threshold: Optional[Severity] = None) -> Command:
    cmd = [venv_tool(venv_dir, "checkov"), "-d", ".", "-o", "json", "--quiet"]
    if threshold is None:
        cmd.append("--soft-fail")
    return cmd


def make_trivy_image_commands(image_ref: str, threshold: Optional[Severity] = None) -> List[Command]:
    return [
        [
            "trivy", "image",
            "--exit-code", "1" if threshold else "0",
            "--severity", _severities(threshold),
            image_ref,
        ],
        ["trivy", "image", "--format", "json", "-o", "trivy-image-report.json", image_ref],
    ]


# ==========
# SonarQube
# ==========

def make_sonar_command(scanner_bin: str, host_url: str, token: str) -> Command:
    return [scanner_bin, f"-Dsonar.host.url={host_url}", f"-Dsonar.login={token}"]


# =======
# Docker
# =======

def make_docker_build_command(image_ref: str, context: str = ".") -> Command:
    return ["docker", "build", "-t", image_ref, context]


def make_docker_login_command(username: str, registry: Optional[str] = None) -> Command:
    cmd = ["docker", "login", "-u", username, "--password-stdin"]
    if registry:
        cmd.append(registry)
    return cmd


def make_docker_tag_command(source: str, target: str) -> Command:
    return ["docker", "tag", source, target]


def make_docker_push_command(image_ref: str) -> Command:
    return ["docker", "push", image_ref]


def make_docker_logout_command(registry: Optional[str] = None) -> Command:
    return ["docker", "logout", registry] if registry else ["docker", "logout"]


def make_docker_run_commands(container: str, port: int, image_ref: str) -> List[Command]:
    """
    Старый контейнер с тем же именем удаляем (rm -f не падает, если его нет),
    затем стартуем новый в фоне.
    """
    return [
        ["docker", "rm", "-f", container],
        ["docker", "run", "-d", "--name", container, "-p", f"{port}:{port}", image_ref],
    ]


# ========
# AWS ECR
# ========

def make_ecr_commands(repository: str, region: str) -> dict[str, Command]:
    return {
        "account": [
            "aws", "sts", "get-caller-identity",
            "--query", "Account", "--output", "text", "--region", region,
        ],
        "describe": [
            "aws", "ecr", "describe-repositories",
            "--repository-names", repository, "--region", region,
        ],
        "create": [
            "aws", "ecr", "create-repository",
            "--repository-name", repository, "--region", region,
        ],
        "password": ["aws", "ecr", "get-login-password", "--region", region],
        "scan": [
            "aws", "ecr", "start-image-scan",
            "--repository-name", repository,
            "--image-id", "imageTag=latest", "--region", region,
        ],
    }
