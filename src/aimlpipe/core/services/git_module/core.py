import asyncio
import shutil
from pathlib import Path
from typing import List, Optional

from git import GitCommandError, Repo as GitRepo

from aimlpipe.core.models import CommitInfo
from aimlpipe.core.services.credentials import UsernamePassword

from .exceptions import SourceFetchError
from .models import LocalRepo
from .utils import PathLike, mask_credentials, on_rm_error, with_credentials


def read_commit(repo: GitRepo) -> Optional[CommitInfo]:
    """
    HEAD-коммит: полный sha, короткий sha и автор. Для пустого репозитория None.
    """
    try:
        commit = repo.head.commit
    except ValueError:
        return None
    return CommitInfo(
        sha=commit.hexsha,
        short_sha=repo.git.rev_parse(commit.hexsha, short=7),
        author=commit.author.name or commit.author.email or "unknown",
    )


class GitCheckout:
    """
    Клонирование репозитория сервиса (через GitPython).

    - clone(repo, branch, dest, credentials) — клон нужной ветки в dest;
      ветка передаётся явно, автоопределения main/master нет.
    """

    def __init__(self, depth: Optional[int] = 1) -> None:
        self.depth = depth

    def _clone_sync(
        self,
        url: str,
        public_url: str,
        branch: str,
        dest: Path,
        logs: List[str],
    ) -> LocalRepo:
        kwargs = {"branch": branch}
        if self.depth:
            kwargs["depth"] = self.depth

        repo_obj: Optional[GitRepo] = None
        try:
            repo_obj = GitRepo.clone_from(url, dest, **kwargs)
            if url != public_url:
                # git сохраняет URL клона в .git/config, токен там оставлять нельзя
                repo_obj.remote("origin").set_url(public_url)
            commit = read_commit(repo_obj)
        finally:
            # Явно закрываем repo_obj, чтобы не оставались залоченные файлы
            if repo_obj is not None:
                repo_obj.close()

        logs.append(f"Репозиторий успешно клонирован в {dest}")
        if commit:
            logs.append(f"HEAD: {commit.short_sha} ({commit.author})")
        return LocalRepo(repo_path=dest, branch=branch, commit=commit, logs=logs)

    async def clone(
        self,
        repo: str,
        branch: str,
        dest: PathLike,
        credentials: Optional[UsernamePassword] = None,
    ) -> LocalRepo:
        """
        Клонирует repo (ветка branch) в dest.

        :raises SourceFetchError: при любых ошибках клонирования; dest удаляется.
        """
        logs: List[str] = []
        dest = Path(dest)
        url = repo
        if credentials is not None:
            url = with_credentials(repo, credentials.username, credentials.password)

        logs.append(f"Клонируем репозиторий {mask_credentials(url)!r} (ветка {branch}) в {dest}")

        try:
            return await asyncio.to_thread(self._clone_sync, url, repo, branch, dest, logs)
        except GitCommandError as e:
            logs.append("GitPython: ошибка при выполнении clone_from.")
            message = str(e)
            if credentials is not None:
                message = message.replace(credentials.password, "***")
            logs.append(message)
            self._discard(dest)
            raise SourceFetchError(repository=repo, branch=branch, logs=logs) from e
        except OSError as e:
            logs.append(f"Ошибка файловой системы при клонировании: {e!r}")
            self._discard(dest)
            raise SourceFetchError(repository=repo, branch=branch, logs=logs) from e

    @staticmethod
    def _discard(dest: Path) -> None:
        if dest.exists():
            shutil.rmtree(dest, onerror=on_rm_error)
