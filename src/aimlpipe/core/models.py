from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ServiceProfile(BaseModel):
    """
    Статическое описание одного микросервиса.
    name        — ключ в таблице сервисов
    repo        — URL git-репозитория
    branch      — ветка по умолчанию
    entrypoint  — файл, который запускается при локальном старте (у библиотек — None)
    image_name  — имя docker-образа
    port        — порт по умолчанию (у библиотек — None)
    """

    model_config = ConfigDict(frozen=True)

    name: str
    repo: str
    branch: str = "master"
    entrypoint: Optional[str] = None
    image_name: str
    port: Optional[int] = None


class RunConfig(BaseModel):
    """
    Итоговая конфигурация одного прогона. Не меняется до конца прогона.
    """

    model_config = ConfigDict(frozen=True)

    repo: str
    service_name: str
    branch: str
    python_version: str
    python_bin: str
    venv_dir: str
    git_credentials: str
    sonarqube_env: str
    docker_image_name: str
    dockerhub_credentials: str
    port: Optional[int] = None
    entrypoint: Optional[str] = None
    run_locally: bool = False


class StageStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNSTABLE = "UNSTABLE"
    ABORTED = "ABORTED"


class StageResult(BaseModel):
    name: str
    status: StageStatus
    artifacts: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    continue_on_error: bool = False
    duration: float = 0.0


class CommitInfo(BaseModel):
    sha: str
    short_sha: str
    author: str


class QualityGateVerdict(BaseModel):
    status: str
    task_id: Optional[str] = None
    analysis_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "OK"


class RunReport(BaseModel):
    status: RunStatus
    run_id: str
    service_name: str
    branch: str
    artifacts_dir: Optional[str] = None
    version: Optional[str] = None
    image: Optional[str] = None
    commit: Optional[CommitInfo] = None
    stages: List[StageResult] = Field(default_factory=list)
    error: Optional[str] = None
    failed_stage: Optional[str] = None
    notified: bool = False
    logs: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def stage(self, name: str) -> Optional[StageResult]:
        for result in self.stages:
            if result.name == name:
                return result
        return None
