from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from commit_manager.config import DEFAULT_COMMIT_COUNT


def _load_project_version(pyproject_path: Path | None = None) -> str:
    """Best-effort loader for the project version from pyproject.toml.

    Avoids importing the HTTP app just to answer ``--version``.
    """
    if pyproject_path is None:
        pyproject_path = Path(__file__).with_name("pyproject.toml")

    import tomllib

    try:
        data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return "0.0.0"
    except tomllib.TOMLDecodeError:
        return "0.0.0"

    project = data.get("project") or {}
    version = project.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return "0.0.0"


def _print_tools(as_json: bool) -> int:
    from commit_manager.tools import default_registry

    catalog = default_registry().catalog()
    if as_json:
        print(json.dumps(catalog, indent=2, sort_keys=True))
        return 0

    width = max(len(entry["name"]) for entry in catalog)
    for entry in catalog:
        flags = []
        if entry["mutating"]:
            flags.append("approval")
        if entry["writesContext"]:
            flags.append("context")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"{entry['name']:<{width}}  {entry['schemaHash']}{suffix}")
    return 0


async def _recent_commits(path: str, branch: str | None, max_count: int) -> int:
    from commit_manager.exceptions import CommitManagerError
    from commit_manager.facade import RepositoryOperations
    from commit_manager.models import LocalRepository

    operations = RepositoryOperations()
    try:
        page = await operations.list_commits(
            LocalRepository(path=str(Path(path).resolve())), branch=branch, max_count=max_count
        )
    except CommitManagerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await operations.aclose()

    for commit in page.commits:
        print(f"{commit.abbreviated_hash}  {commit.date[:10]}  {commit.author_name}: {commit.message}")
    print(f"({len(page.commits)} of {page.total})")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="commit-manager",
        description="Commit manager CLI helpers.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the commit manager version and exit.",
    )

    subparsers = parser.add_subparsers(dest="command")
    tools_parser = subparsers.add_parser("tools", help="Print the tool catalog.")
    tools_parser.add_argument("--json", action="store_true", help="Print the full catalog as JSON.")

    log_parser = subparsers.add_parser("log", help="Print recent commits of a local repository.")
    log_parser.add_argument("path", help="Path to a git working copy.")
    log_parser.add_argument("--branch", default=None)
    log_parser.add_argument("-n", "--max-count", type=int, default=DEFAULT_COMMIT_COUNT)

    if argv is None:
        argv = sys.argv[1:]

    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # Return the exit code when used as a library function in tests.
        return int(getattr(exc, "code", 1) or 0)

    if args.version and not args.command:
        print(_load_project_version())
        return 0

    if args.command == "tools":
        return _print_tools(args.json)

    if args.command == "log":
        return asyncio.run(_recent_commits(args.path, args.branch, args.max_count))

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
