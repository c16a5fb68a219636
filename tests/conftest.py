import asyncio
import inspect
import os
import subprocess

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test to run in event loop")


def pytest_pyfunc_call(pyfuncitem):
    if "asyncio" not in pyfuncitem.keywords:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    argnames = pyfuncitem._fixtureinfo.argnames
    kwargs = {name: pyfuncitem.funcargs[name] for name in argnames}

    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_func(**kwargs))
    finally:
        loop.close()
        asyncio.set_event_loop(None)

    return True


_GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "author@example.com",
    "GIT_COMMITTER_NAME": "Test Author",
    "GIT_COMMITTER_EMAIL": "author@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git(repo, *args):
    """Run git synchronously in ``repo`` and return stdout."""

    env = {**os.environ, **_GIT_ENV}
    proc = subprocess.run(
        ["git", *args],
        cwd=str(repo),
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return proc.stdout


def commit_file(repo, name, content, message):
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD").strip()


@pytest.fixture
def git_repo(tmp_path):
    """A repository on ``main`` with three commits and a ``feature`` branch.

    History: init (README) -> add app.py -> update README. ``feature`` branches
    off the second commit and adds feature.txt.
    """

    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.name", "Test Author")
    git(repo, "config", "user.email", "author@example.com")
    git(repo, "config", "commit.gpgsign", "false")

    commit_file(repo, "README.md", "hello\n", "Initial commit")
    second = commit_file(repo, "src/app.py", "print('hi')\n", "Add app")
    git(repo, "branch", "feature", second)
    commit_file(repo, "README.md", "hello\nworld\n", "Update readme")

    git(repo, "checkout", "-q", "feature")
    commit_file(repo, "feature.txt", "feature work\n", "Feature work")
    git(repo, "checkout", "-q", "main")
    return repo
