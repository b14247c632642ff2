# ─────────────────────────────────────────────────────────────────────────────
# Admission Control — backlog ceiling shared by every model queue
# ─────────────────────────────────────────────────────────────────────────────
# Best-effort: the depth read and the later enqueue are not atomic, so
# concurrent requests can all see room and overshoot the ceiling briefly.
# ─────────────────────────────────────────────────────────────────────────────

from dataclasses import dataclass
from enum import StrEnum

import structlog

from dispatcher.registry import ModelRegistry

logger = structlog.get_logger(__name__)


class Decision(StrEnum):
    accepted = "accepted"
    overloaded = "overloaded"
    unknown_model = "unknown_model"


@dataclass(frozen=True)
class AdmissionResult:
    decision: Decision
    depth: int | None = None

    @property
    def accepted(self) -> bool:
        return self.decision is Decision.accepted


class AdmissionController:
    """Accepts a submission while the model's backlog is at or under the ceiling."""

    def __init__(self, registry: ModelRegistry, ceiling: int) -> None:
        self._registry = registry
        self._ceiling = ceiling

    @property
    def ceiling(self) -> int:
        return self._ceiling

    def over_ceiling(self, depth: int) -> bool:
        return depth > self._ceiling

    async def admit(self, model: str) -> AdmissionResult:
        """Decide whether a new job for ``model`` may be queued.

        BackendUnavailableError from the depth read propagates unchanged.
        """
        route = self._registry.lookup(model)
        if route is None:
            return AdmissionResult(Decision.unknown_model)

        depth = await route.queue.depth()
        if self.over_ceiling(depth):
            logger.info(
                "admission_rejected",
                model=route.model.value,
                depth=depth,
                ceiling=self._ceiling,
            )
            return AdmissionResult(Decision.overloaded, depth)
        return AdmissionResult(Decision.accepted, depth)
