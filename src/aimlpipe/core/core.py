from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Optional, Sequence

import httpx

from aimlpipe.core.context import RunContext, RunWorkspace, SonarFactory
from aimlpipe.core.models import RunConfig, RunReport, RunStatus
from aimlpipe.core.profiles import get_profiles
from aimlpipe.core.resolver import resolve
from aimlpipe.core.sequencer import SequenceOutcome, StageSequencer
from aimlpipe.core.services.credentials import CredentialStore
from aimlpipe.core.services.git_module import GitCheckout
from aimlpipe.core.services.notify import TeamsNotifier, build_message
from aimlpipe.core.services.process import ProcessRunner
from aimlpipe.core.services.sonar import SonarQubeClient
from aimlpipe.core.stages import Step, build_plan
from aimlpipe.settings import Settings, get_settings

NotifierFactory = Callable[[str], TeamsNotifier]


class PipelineCore:
    """
    Фасад одного прогона: рабочая папка → стадии → уведомление → cleanup.

    Все внешние зависимости можно подменить (тесты, другой registry и т.п.).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[ProcessRunner] = None,
        git: Optional[GitCheckout] = None,
        credentials: Optional[CredentialStore] = None,
        sonar_factory: Optional[SonarFactory] = None,
        notifier_factory: Optional[NotifierFactory] = None,
        plan: Optional[Sequence[Step]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.runner = runner or ProcessRunner()
        self.git = git or GitCheckout()
        self.credentials = credentials or CredentialStore()
        self.sonar_factory = sonar_factory or self._default_sonar_factory
        self.notifier_factory = notifier_factory or TeamsNotifier
        self.plan = list(plan) if plan is not None else build_plan(self.settings)

    def _default_sonar_factory(self, host_url: str, token: Optional[str]) -> SonarQubeClient:
        return SonarQubeClient(
            host_url, token, poll_interval=self.settings.quality_gate_poll_interval
        )

    def resolve(self, overrides: Optional[Mapping[str, Any]] = None) -> RunConfig:
        return resolve(overrides, get_profiles(self.settings.profile_set))

    async def run_with_overrides(self, overrides: Optional[Mapping[str, Any]] = None) -> RunReport:
        return await self.run(self.resolve(overrides))

    async def run(self, config: RunConfig) -> RunReport:
        workspace = RunWorkspace.create(self.settings.workdir, config.service_name)
        ctx = RunContext(
            config=config,
            settings=self.settings,
            workspace=workspace,
            runner=self.runner,
            git=self.git,
            credentials=self.credentials,
            sonar_factory=self.sonar_factory,
        )
        ctx.log("=" * 46)
        ctx.log(f"Service Name   : {config.service_name}")
        ctx.log(f"Repository     : {config.repo}")
        ctx.log(f"Branch         : {config.branch}")
        ctx.log(f"Python Version : {config.python_version}")
        ctx.log(f"Run ID         : {workspace.run_id}")
        ctx.log("=" * 46)

        try:
            outcome = await StageSequencer(self.plan).run(ctx)
        except asyncio.CancelledError:
            ctx.warn("Прогон прерван.")
            await self._post(ctx, self._report(ctx, RunStatus.ABORTED, error="Run was cancelled"))
            raise
        except Exception as e:
            ctx.warn(f"Непредвиденная ошибка: {e!r}")
            await self._post(ctx, self._report(ctx, RunStatus.FAILURE, error=repr(e)))
            raise

        report = self._report(ctx, self._status(outcome), outcome=outcome)
        await self._post(ctx, report)
        return report

    @staticmethod
    def _status(outcome: SequenceOutcome) -> RunStatus:
        if outcome.failed:
            return RunStatus.FAILURE
        if outcome.unstable:
            return RunStatus.UNSTABLE
        return RunStatus.SUCCESS

    @staticmethod
    def _report(
        ctx: RunContext,
        status: RunStatus,
        outcome: Optional[SequenceOutcome] = None,
        error: Optional[str] = None,
    ) -> RunReport:
        if outcome is not None and outcome.error is not None:
            error = outcome.error.description
        return RunReport(
            status=status,
            run_id=ctx.workspace.run_id,
            service_name=ctx.config.service_name,
            branch=ctx.config.branch,
            artifacts_dir=str(ctx.workspace.artifacts_dir),
            version=ctx.version,
            image=ctx.pushed_image or ctx.image_ref,
            commit=ctx.commit,
            stages=outcome.results if outcome else [],
            error=error,
            failed_stage=outcome.failed_stage if outcome else None,
            logs=ctx.logs,
            warnings=ctx.warnings,
        )

    def _webhook_url(self) -> Optional[str]:
        return self.settings.notify_webhook_url or self.credentials.find_secret(
            self.settings.notify_webhook_credentials
        )

    async def _notify(self, ctx: RunContext, report: RunReport) -> None:
        text = build_message(
            report,
            job_name=self.settings.job_name,
            build_number=self.settings.build_number or report.run_id,
            build_url=self.settings.build_url,
        )
        ctx.log(text)

        webhook_url = self._webhook_url()
        if not webhook_url:
            ctx.warn("Webhook для уведомлений не настроен — уведомление не отправлено.")
            return

        try:
            await self.notifier_factory(webhook_url).send(report, text)
        except httpx.HTTPError as e:
            ctx.warn(f"Не удалось отправить уведомление: {e}")
            return
        report.notified = True
        ctx.log(f"Уведомление отправлено ({report.status.value}).")

    async def _post(self, ctx: RunContext, report: RunReport) -> None:
        """
        post { always }: уведомление и уборка рабочей папки. Ошибки здесь
        не меняют итог прогона.
        """
        await self._notify(ctx, report)

        if not self.settings.cleanup_workspace:
            ctx.log(f"Рабочая папка сохранена: {ctx.workspace.root}")
        elif ctx.keep_workspace:
            ctx.log(f"Сервис запущен из {ctx.workspace.root} — папка не удаляется.")
        else:
            ctx.log("Cleaning up workspace...")
            try:
                ctx.workspace.cleanup()
            except OSError as e:
                ctx.warn(f"Не удалось удалить рабочую папку {ctx.workspace.root}: {e}")

        report.logs = list(ctx.logs)
        report.warnings = list(ctx.warnings)
