from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from aimlpipe.core.context import RunContext
from aimlpipe.core.models import StageResult, StageStatus
from aimlpipe.core.stages import ParallelGroup, Stage, Step
from aimlpipe.exception import PipelineException, StageTimeoutError


@dataclass
class SequenceOutcome:
    results: List[StageResult] = field(default_factory=list)
    error: Optional[PipelineException] = None
    failed_stage: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def unstable(self) -> bool:
        return any(r.status == StageStatus.FAILURE and r.continue_on_error for r in self.results)


def _members(step: Step) -> Sequence[Stage]:
    return step.members if isinstance(step, ParallelGroup) else [step]


class StageSequencer:
    """
    Прогоняет стадии строго по порядку. Первая фатальная ошибка останавливает
    прогон, оставшиеся стадии помечаются skipped. ParallelGroup запускает всех
    участников сразу и ждёт их всех, прежде чем двигаться дальше.
    """

    def __init__(self, plan: Sequence[Step]) -> None:
        self.plan = list(plan)

    def _skipped(self, stage: Stage) -> StageResult:
        return StageResult(
            name=stage.name,
            status=StageStatus.SKIPPED,
            continue_on_error=stage.continue_on_error,
        )

    async def _run_stage(
        self, stage: Stage, ctx: RunContext
    ) -> Tuple[StageResult, Optional[PipelineException]]:
        if stage.when is not None and not stage.when(ctx):
            ctx.log(f"==> [{stage.name}] skipped (condition not met)")
            return self._skipped(stage), None

        timeout = ctx.settings.stage_timeout(stage.name)
        ctx.log(f"==> [{stage.name}] start")
        started = time.monotonic()
        error: Optional[PipelineException] = None
        try:
            await asyncio.wait_for(stage.handler(ctx), timeout=timeout)
        except asyncio.TimeoutError:
            error = StageTimeoutError([stage.name], timeout)
        except PipelineException as e:
            error = e
        except OSError as e:
            error = PipelineException(description=f"{stage.name}: {e}")

        duration = round(time.monotonic() - started, 3)
        result = StageResult(
            name=stage.name,
            status=StageStatus.SUCCESS if error is None else StageStatus.FAILURE,
            artifacts=list(ctx.artifacts.get(stage.name, [])),
            error=error.description if error else None,
            continue_on_error=stage.continue_on_error,
            duration=duration,
        )

        if error is None:
            ctx.log(f"<== [{stage.name}] success ({duration:.1f}s)")
            return result, None

        ctx.logs.extend(line for line in error.logs if line)
        if stage.continue_on_error:
            ctx.warn(f"<== [{stage.name}] failed, continuing: {error.description}")
            return result, None
        ctx.warn(f"<== [{stage.name}] FAILED: {error.description}")
        return result, error

    async def _run_group(
        self, group: ParallelGroup, ctx: RunContext
    ) -> Tuple[List[StageResult], Optional[Tuple[str, PipelineException]]]:
        ctx.log(f"==> [{group.name}] parallel: {', '.join(m.name for m in group.members)}")
        outcomes = await asyncio.gather(
            *(self._run_stage(member, ctx) for member in group.members),
            return_exceptions=True,
        )

        # Непредвиденные исключения (не PipelineException) пробрасываем только
        # после того, как все участники группы завершились
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        results = [result for result, _ in outcomes]
        fatal = next(
            ((result.name, error) for result, error in outcomes if error is not None),
            None,
        )
        return results, fatal

    async def run(self, ctx: RunContext) -> SequenceOutcome:
        outcome = SequenceOutcome()
        for step in self.plan:
            if outcome.failed:
                outcome.results.extend(self._skipped(stage) for stage in _members(step))
                continue

            if isinstance(step, ParallelGroup):
                results, fatal = await self._run_group(step, ctx)
                outcome.results.extend(results)
                if fatal is not None:
                    outcome.failed_stage, outcome.error = fatal
            else:
                result, error = await self._run_stage(step, ctx)
                outcome.results.append(result)
                if error is not None:
                    outcome.failed_stage, outcome.error = step.name, error

        return outcome
