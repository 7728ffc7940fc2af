from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import click

from aimlpipe.core.models import CommitInfo, QualityGateVerdict, RunConfig
from aimlpipe.core.services.credentials import CredentialStore
from aimlpipe.core.services.git_module import GitCheckout
from aimlpipe.core.services.git_module.utils import ensure_dir, on_rm_error
from aimlpipe.core.services.process import CommandResult, ProcessRunner
from aimlpipe.core.services.sonar import SonarQubeClient
from aimlpipe.settings import Settings

SonarFactory = Callable[[str, Optional[str]], SonarQubeClient]


@dataclass
class RunWorkspace:
    """
    Рабочая папка одного прогона.

    root          — уникальная временная директория (mkdtemp), никто больше её не делит;
    checkout_dir  — клон репозитория сервиса;
    artifacts_dir — архив отчётов, лежит ВНЕ root и переживает cleanup().
    """

    root: Path
    service_name: str
    artifacts_dir: Path

    @classmethod
    def create(cls, base_dir: Path, service_name: str) -> "RunWorkspace":
        runs_dir = ensure_dir(Path(base_dir) / "runs")
        root = Path(tempfile.mkdtemp(prefix=f"{service_name}_", dir=runs_dir))
        artifacts_dir = ensure_dir(Path(base_dir) / "artifacts" / root.name)
        return cls(root=root, service_name=service_name, artifacts_dir=artifacts_dir)

    @property
    def run_id(self) -> str:
        return self.root.name

    @property
    def checkout_dir(self) -> Path:
        return self.root / self.service_name

    def venv_dir(self, venv: str) -> Path:
        path = Path(venv)
        return path if path.is_absolute() else self.root / path

    def archive(self, files: Iterable[Path]) -> List[str]:
        """
        Копирует существующие файлы в artifacts_dir. Отсутствующие пропускаются
        (аналог allowEmptyArchive).
        """
        archived: List[str] = []
        for src in files:
            src = Path(src)
            if not src.is_file():
                continue
            dest = self.artifacts_dir / src.name
            shutil.copy2(src, dest)
            archived.append(str(dest))
        return archived

    def cleanup(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root, onerror=on_rm_error)


@dataclass
class RunContext:
    """
    Всё, что стадии знают о текущем прогоне. Стадии пишут сюда результаты
    (версию, образ, покрытие), следующие стадии их читают.
    """

    config: RunConfig
    settings: Settings
    workspace: RunWorkspace
    runner: ProcessRunner
    git: GitCheckout
    credentials: CredentialStore
    sonar_factory: SonarFactory

    logs: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    artifacts: Dict[str, List[str]] = field(default_factory=dict)

    commit: Optional[CommitInfo] = None
    version: Optional[str] = None
    image_ref: Optional[str] = None
    pushed_image: Optional[str] = None
    coverage_path: Optional[Path] = None
    quality_gate: Optional[QualityGateVerdict] = None
    keep_workspace: bool = False

    @property
    def checkout_dir(self) -> Path:
        return self.workspace.checkout_dir

    @property
    def venv_dir(self) -> Path:
        return self.workspace.venv_dir(self.config.venv_dir)

    def log(self, message: str) -> None:
        click.echo(message)
        self.logs.append(message)

    def warn(self, message: str) -> None:
        click.echo(message, err=True)
        self.logs.append(message)
        self.warnings.append(message)

    def archive(self, stage_name: str, *names: str) -> List[str]:
        archived = self.workspace.archive(self.checkout_dir / name for name in names)
        self.artifacts.setdefault(stage_name, []).extend(archived)
        if archived:
            self.log(f"[{stage_name}] В архив: {', '.join(Path(p).name for p in archived)}")
        return archived

    async def sh(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
        check: bool = True,
        display: Optional[str] = None,
    ) -> CommandResult:
        """
        Запуск команды в checkout_dir. display — как показать команду в логах
        (когда в аргументах есть секреты).
        """
        self.log(f"$ {display or ' '.join(str(c) for c in command)}")
        return await self.runner.run(
            command,
            cwd=cwd or self.checkout_dir,
            env=env,
            input=input,
            check=check,
        )
