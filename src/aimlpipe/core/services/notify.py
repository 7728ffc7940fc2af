from __future__ import annotations

from typing import Optional

import httpx

from aimlpipe.core.models import RunReport, RunStatus

STATUS_COLORS = {
    RunStatus.SUCCESS: "#00FF00",
    RunStatus.FAILURE: "#FF0000",
    RunStatus.UNSTABLE: "#FFA500",
    RunStatus.ABORTED: "#808080",
}


def status_color(status: RunStatus | str) -> str:
    try:
        return STATUS_COLORS[RunStatus(status)]
    except ValueError:
        return "#000000"


def build_message(
    report: RunReport,
    job_name: str,
    build_number: Optional[str] = None,
    build_url: Optional[str] = None,
) -> str:
    """
    Текст уведомления (markdown), понятный и Teams, и человеку в логах.
    """
    commit = report.commit.short_sha if report.commit else "N/A"
    author = report.commit.author if report.commit else "N/A"
    job = f"{job_name} #{build_number}" if build_number else job_name

    lines = [
        f"*Build {report.status.value}* for {report.service_name} on branch {report.branch}",
        f"Commit: {commit} by {author}",
        f"Job: {job}",
    ]
    if report.image:
        lines.append(f"Image: {report.image}")
    if report.failed_stage:
        lines.append(f"Failed stage: {report.failed_stage}")
    if report.error:
        lines.append(f"Error: {report.error}")
    if build_url:
        lines.append(f"[View Build]({build_url})")
    return "\n".join(lines)


def build_card(report: RunReport, text: str) -> dict:
    """
    MessageCard для Office 365 connector (то же, что шлёт office365ConnectorSend).
    """
    return {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "summary": f"{report.service_name}: {report.status.value}",
        "themeColor": status_color(report.status).lstrip("#"),
        "title": f"{report.service_name}: {report.status.value}",
        "text": text,
    }


class TeamsNotifier:
    def __init__(
        self,
        webhook_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15,
    ) -> None:
        self.webhook_url = webhook_url
        self.transport = transport
        self.timeout = timeout

    async def send(self, report: RunReport, text: str) -> None:
        """
        :raises httpx.HTTPError: webhook недоступен или ответил ошибкой.
        """
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            response = await client.post(self.webhook_url, json=build_card(report, text))
            response.raise_for_status()
