"""Conversational git commit manager core.

Repository operations over a local ``git`` working copy or a GitHub
repository, a JSON-schema validated tool catalog for a language model, an
approval gate for mutating calls, and the step-bounded loop that drives them.
"""

from .approval import ApprovalGate, ToolCallState
from .facade import RepositoryOperations
from .models import LocalRepository, RemoteRepository, repository_ref_from_dict
from .orchestrator import OrchestrationLoop, TurnResult

__all__ = [
    "ApprovalGate",
    "LocalRepository",
    "OrchestrationLoop",
    "RemoteRepository",
    "RepositoryOperations",
    "ToolCallState",
    "TurnResult",
    "repository_ref_from_dict",
]
