import click

from aimlpipe.core.core import PipelineCore
from aimlpipe.core.models import RunStatus
from aimlpipe.core.profiles import get_profiles
from aimlpipe.core.resolver import resolve, unknown_keys
from aimlpipe.core.version import read_version
from aimlpipe.exception import ConfigurationError
from aimlpipe.settings import LOGO, get_settings
from aimlpipe.utils import async_click, parse_assignments

set_option = click.option(
    "--set",
    "assignments",
    multiple=True,
    metavar="KEY=VALUE",
    help="Переопределение параметра (REPO, SERVICE_NAME, PORT, ...). Можно несколько раз.",
)


def _overrides(assignments, service=None, branch=None, run_locally=None) -> dict:
    overrides = parse_assignments(assignments)
    if service:
        overrides["SERVICE_NAME"] = service
    if branch:
        overrides["BRANCH"] = branch
    if run_locally:
        overrides["RUN_LOCALLY"] = True

    for key in unknown_keys(overrides):
        click.echo(f"Неизвестный параметр {key} — игнорируется.", err=True)
    return overrides


@click.group()
def main():
    """CI/CD пайплайн для AIML-микросервисов."""


@main.command()
@set_option
@click.option("--service", default=None, help="Имя сервиса (SERVICE_NAME)")
@click.option("--branch", default=None, help="Ветка (BRANCH)")
@click.option("--run-locally", is_flag=True, default=False, help="Запустить сервис после push")
@click.option("--json", "as_json", is_flag=True, default=False, help="Вывести итоговый отчёт в JSON")
@async_click
async def run(assignments, service, branch, run_locally, as_json):
    """Полный прогон пайплайна."""
    click.echo(LOGO + "\n")

    core = PipelineCore()
    try:
        config = core.resolve(_overrides(assignments, service, branch, run_locally))
    except ConfigurationError as e:
        raise click.ClickException(e.description)

    report = await core.run(config)

    if as_json:
        click.echo(report.model_dump_json(indent=2))
    else:
        for stage in report.stages:
            click.echo(f"{stage.status.value:>8}  {stage.name}")
        click.echo(f"Итог: {report.status.value}")

    if report.status in (RunStatus.FAILURE, RunStatus.ABORTED):
        raise SystemExit(1)


@main.command("resolve")
@set_option
def resolve_command(assignments):
    """Показать итоговую конфигурацию без запуска стадий."""
    try:
        config = resolve(
            _overrides(assignments), get_profiles(get_settings().profile_set)
        )
    except ConfigurationError as e:
        raise click.ClickException(e.description)
    click.echo(config.model_dump_json(indent=2))


@main.command()
def services():
    """Список известных сервисов текущей таблицы."""
    profile_set = get_settings().profile_set
    click.echo(f"Таблица сервисов: {profile_set}")
    for profile in get_profiles(profile_set).values():
        port = profile.port if profile.port is not None else "-"
        entrypoint = profile.entrypoint or "-"
        click.echo(f"{profile.name}\t{port}\t{entrypoint}\t{profile.repo}")


@main.command()
@click.argument("project_file", default="pyproject.toml")
def version(project_file):
    """Версия проекта из pyproject.toml (или "latest")."""
    click.echo(read_version(project_file))


if __name__ == "__main__":
    main()
