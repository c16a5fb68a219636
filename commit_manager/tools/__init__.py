"""Model-facing tools.

Importing ``repo_tools`` and ``general_tools`` registers their tools on the
shared ``REGISTRY``; ``default_registry`` does that lazily so ``approval`` can
import ``tools.errors`` without pulling the whole catalog in.
"""

from __future__ import annotations


def default_registry():
    from . import general_tools, repo_tools  # noqa: F401
    from .registry import REGISTRY

    return REGISTRY


__all__ = ["default_registry"]
