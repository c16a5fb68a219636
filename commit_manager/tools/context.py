"""Per-turn state handed to every tool executor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..exceptions import ContextError
from ..models import RepositoryRef

if TYPE_CHECKING:  # pragma: no cover
    from ..approval import ApprovalGate
    from ..facade import RepositoryOperations


class RepositoryContext:
    """Mutable cell holding the repository the current turn operates on.

    ``replace`` swaps the whole reference; values are never merged.
    """

    def __init__(self, ref: Optional[RepositoryRef] = None) -> None:
        self._ref = ref

    def replace(self, ref: Optional[RepositoryRef]) -> None:
        self._ref = ref

    def snapshot(self) -> Optional[RepositoryRef]:
        return self._ref

    def require(self) -> RepositoryRef:
        if self._ref is None:
            raise ContextError(
                "No repository selected. Call selectRepository (or ask the user which "
                "repository to use) before calling this tool."
            )
        return self._ref

    def __repr__(self) -> str:  # pragma: no cover
        return f"RepositoryContext({self._ref!r})"


@dataclass
class ToolContext:
    repository: RepositoryContext
    operations: "RepositoryOperations"
    gate: Optional["ApprovalGate"] = None
    # Credential fingerprint of whoever started the turn; approvals are scoped to it.
    requester: Optional[str] = None

    def detached(self) -> "ToolContext":
        """Copy bound to a frozen snapshot of the current repository."""

        return ToolContext(
            repository=RepositoryContext(self.repository.snapshot()),
            operations=self.operations,
            gate=self.gate,
            requester=self.requester,
        )


__all__ = ["RepositoryContext", "ToolContext"]
