"""Where finished decisions go. Saving is best-effort from the orchestrator's side."""

import logging
from pathlib import Path
from typing import Protocol

from committee.models import CommitteeDecision
from committee.output import save_to_file

logger = logging.getLogger(__name__)


class DecisionRepository(Protocol):
    def save(self, decision: CommitteeDecision) -> None: ...


class InMemoryDecisionRepository:
    """Keeps decisions by id for the life of the process."""

    def __init__(self) -> None:
        self._decisions: dict[str, CommitteeDecision] = {}

    def save(self, decision: CommitteeDecision) -> None:
        self._decisions[decision.id] = decision
        logger.debug("Stored decision %s for %s", decision.id, decision.subject_id)

    def get(self, decision_id: str) -> CommitteeDecision | None:
        return self._decisions.get(decision_id)

    def for_subject(self, subject_id: str) -> list[CommitteeDecision]:
        return [d for d in self._decisions.values() if d.subject_id == subject_id]

    def __len__(self) -> int:
        return len(self._decisions)


class MarkdownDecisionWriter:
    """Writes each decision as a markdown report under output_dir."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir
        self.last_path: Path | None = None

    def save(self, decision: CommitteeDecision) -> None:
        self.last_path = save_to_file(decision, self.output_dir)
