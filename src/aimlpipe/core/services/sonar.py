"""
Клиент SonarQube: ожидание quality gate после sonar-scanner.

sonar-scanner пишет .scannerwork/report-task.txt с ceTaskId. Дальше:
  1) api/ce/task?id=...                      — ждём, пока сервер обработает анализ;
  2) api/qualitygates/project_status?analysisId=... — забираем вердикт.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Optional

import httpx

from aimlpipe.core.models import QualityGateVerdict
from aimlpipe.exception import QualityGateError

REPORT_TASK_FILE = Path(".scannerwork") / "report-task.txt"

PENDING_TASK_STATUSES = {"PENDING", "IN_PROGRESS"}


def read_report_task(checkout_dir: Path) -> Dict[str, str]:
    """
    Разбор report-task.txt (формат key=value).

    :raises QualityGateError: файла нет или в нём нет ceTaskId.
    """
    path = Path(checkout_dir) / REPORT_TASK_FILE
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        raise QualityGateError("NONE", f"{REPORT_TASK_FILE} not found, was sonar-scanner run?")

    task: Dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        task[key.strip()] = value.strip()

    if not task.get("ceTaskId"):
        raise QualityGateError("NONE", f"ceTaskId missing in {REPORT_TASK_FILE}")
    return task


class SonarQubeClient:
    def __init__(
        self,
        host_url: str,
        token: Optional[str] = None,
        poll_interval: float = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.host_url = host_url.rstrip("/")
        self.poll_interval = poll_interval
        self.client = httpx.AsyncClient(
            base_url=self.host_url,
            auth=(token, "") if token else None,
            transport=transport,
            timeout=30,
        )

    async def __aenter__(self) -> "SonarQubeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get(self, path: str, params: Dict[str, str]) -> dict:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise QualityGateError("UNKNOWN", f"SonarQube request {path} failed: {e}") from e
        except ValueError as e:
            # прокси или SSO отвечают HTML-страницей с кодом 200
            raise QualityGateError("UNKNOWN", f"SonarQube request {path} returned non-JSON body") from e

    async def _wait_for_task(self, task_id: str) -> str:
        while True:
            data = await self._get("/api/ce/task", {"id": task_id})
            task = data.get("task", {})
            status = task.get("status", "UNKNOWN")
            if status == "SUCCESS":
                analysis_id = task.get("analysisId")
                if not analysis_id:
                    raise QualityGateError("NONE", f"Task {task_id} finished without analysisId")
                return analysis_id
            if status not in PENDING_TASK_STATUSES:
                raise QualityGateError(status, f"SonarQube background task {task_id} ended with {status}")
            await asyncio.sleep(self.poll_interval)

    async def _verdict(self, task_id: str) -> QualityGateVerdict:
        analysis_id = await self._wait_for_task(task_id)
        data = await self._get("/api/qualitygates/project_status", {"analysisId": analysis_id})
        status = data.get("projectStatus", {}).get("status", "NONE")
        return QualityGateVerdict(status=status, task_id=task_id, analysis_id=analysis_id)

    async def wait_for_quality_gate(self, task_id: str, timeout: float) -> QualityGateVerdict:
        """
        Блокируется до вердикта, но не дольше timeout секунд.

        :raises QualityGateError: таймаут, ошибка фоновой задачи или HTTP-ошибка.
        """
        try:
            return await asyncio.wait_for(self._verdict(task_id), timeout=timeout)
        except asyncio.TimeoutError:
            raise QualityGateError(
                "TIMEOUT", f"SonarQube Quality Gate did not respond within {timeout:g}s"
            )
