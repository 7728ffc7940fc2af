"""
Сборка RunConfig из переопределений вызывающего и таблицы сервисов.

Правило для каждого поля одно: явное непустое значение из overrides,
иначе значение из профиля сервиса, иначе жёсткий дефолт.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from aimlpipe.core.models import RunConfig, ServiceProfile
from aimlpipe.core.profiles import STANDARD_PROFILES
from aimlpipe.exception import ConfigurationError

DEFAULT_SERVICE_NAME = "api-gateway"

DEFAULTS: Mapping[str, str] = {
    "PYTHON_VERSION": "3.11",
    "PYTHON_BIN": "/usr/bin/python3.11",
    "GIT_CREDENTIALS": "git-access",
    "VENV_DIR": "myenv",
    "SONARQUBE_ENV": "SonarQube-Server",
    "DOCKERHUB_CREDENTIALS": "dockerhub-credentials",
    "BRANCH": "master",
}

KNOWN_KEYS = frozenset({
    "REPO",
    "SERVICE_NAME",
    "BRANCH",
    "PYTHON_VERSION",
    "PYTHON_BIN",
    "GIT_CREDENTIALS",
    "VENV_DIR",
    "SONARQUBE_ENV",
    "DOCKER_IMAGE_NAME",
    "DOCKERHUB_CREDENTIALS",
    "PORT",
    "ENTRYPOINT",
    "RUN_LOCALLY",
    "RUN_LOCAL",
})

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _supplied(overrides: Mapping[str, Any], key: str) -> Optional[Any]:
    value = overrides.get(key)
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _as_str(overrides: Mapping[str, Any], key: str) -> Optional[str]:
    value = _supplied(overrides, key)
    return str(value).strip() if value is not None else None


def _parse_port(value: Any) -> int:
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"PORT must be an integer, got {value!r}")
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"PORT out of range: {port}")
    return port


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {value!r}")


def _run_locally(overrides: Mapping[str, Any]) -> bool:
    # RUN_LOCALLY приоритетнее старого RUN_LOCAL
    for key in ("RUN_LOCALLY", "RUN_LOCAL"):
        value = _supplied(overrides, key)
        if value is not None:
            return _parse_bool(key, value)
    return False


def resolve(
    overrides: Optional[Mapping[str, Any]] = None,
    profiles: Optional[Mapping[str, ServiceProfile]] = None,
) -> RunConfig:
    """
    Накладывает overrides на профиль сервиса и возвращает RunConfig.

    :param overrides: словарь с ключами вида SERVICE_NAME, PORT, ...
    :param profiles:  таблица сервисов (по умолчанию стандартная).
    :raises ConfigurationError: неизвестный сервис без явных REPO/PORT/ENTRYPOINT
                                или некорректное значение поля.
    """
    overrides = overrides or {}
    profiles = STANDARD_PROFILES if profiles is None else profiles

    service_name = _as_str(overrides, "SERVICE_NAME") or DEFAULT_SERVICE_NAME
    profile = profiles.get(service_name)

    repo = _as_str(overrides, "REPO")
    entrypoint = _as_str(overrides, "ENTRYPOINT")
    port_value = _supplied(overrides, "PORT")
    port = _parse_port(port_value) if port_value is not None else None

    if profile is None:
        missing = [
            key
            for key, value in (("REPO", repo), ("PORT", port), ("ENTRYPOINT", entrypoint))
            if value is None
        ]
        if missing:
            raise ConfigurationError(
                f"Unknown service {service_name!r} has no profile; "
                f"missing required {', '.join(missing)}. Known services: {sorted(profiles)}"
            )
    else:
        repo = repo or profile.repo
        entrypoint = entrypoint or profile.entrypoint
        port = port if port is not None else profile.port

    branch = _as_str(overrides, "BRANCH") or (profile.branch if profile else DEFAULTS["BRANCH"])
    image_name = _as_str(overrides, "DOCKER_IMAGE_NAME") or (
        profile.image_name if profile else service_name
    )

    def pick(key: str) -> str:
        return _as_str(overrides, key) or DEFAULTS[key]

    return RunConfig(
        repo=repo,
        service_name=service_name,
        branch=branch,
        python_version=pick("PYTHON_VERSION"),
        python_bin=pick("PYTHON_BIN"),
        venv_dir=pick("VENV_DIR"),
        git_credentials=pick("GIT_CREDENTIALS"),
        sonarqube_env=pick("SONARQUBE_ENV"),
        docker_image_name=image_name,
        dockerhub_credentials=pick("DOCKERHUB_CREDENTIALS"),
        port=port,
        entrypoint=entrypoint,
        run_locally=_run_locally(overrides),
    )


def unknown_keys(overrides: Mapping[str, Any]) -> list[str]:
    """Ключи, которые resolve не распознаёт (для предупреждений в CLI)."""
    return sorted(k for k in overrides if k not in KNOWN_KEYS)
