"""
Crawl run state machine.

States:
    pending → running → completed | failed | canceled
                 ↕
               paused → canceled

Terminal states are sticky. Transitions are applied with a conditional
UPDATE on the current status, so two callers racing for the same run
cannot both win.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, Set

from django.db import transaction
from django.utils import timezone

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Valid states for a crawl run."""
    PENDING = 'pending'
    RUNNING = 'running'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELED = 'canceled'

    @classmethod
    def from_string(cls, value: str) -> 'RunState':
        """Convert string to RunState."""
        for state in cls:
            if state.value == value:
                return state
        raise ValueError(f"Unknown state: {value}")

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RunState.COMPLETED, RunState.FAILED, RunState.CANCELED})

VALID_TRANSITIONS: Dict[RunState, Set[RunState]] = {
    RunState.PENDING: {RunState.RUNNING, RunState.FAILED, RunState.CANCELED},
    RunState.RUNNING: {RunState.PAUSED, RunState.COMPLETED, RunState.FAILED, RunState.CANCELED},
    RunState.PAUSED: {RunState.RUNNING, RunState.CANCELED},
    RunState.COMPLETED: set(),
    RunState.FAILED: set(),
    RunState.CANCELED: set(),
}


class TransitionError(Exception):
    """Raised when a state transition is invalid."""

    def __init__(self, run_id, current: str, target: str):
        super().__init__(f"Invalid transition for run {run_id} from {current} to {target}")
        self.run_id = run_id
        self.current = current
        self.target = target


def can_transition(current: str, target: str) -> bool:
    return RunState.from_string(target) in VALID_TRANSITIONS[RunState.from_string(current)]


def sources_for(target: RunState) -> Iterable[str]:
    """States from which ``target`` may be entered."""
    return [state.value for state, targets in VALID_TRANSITIONS.items() if target in targets]


def transition_run(run_id: int, target: str, strict: bool = True) -> bool:
    """
    Move a run to ``target`` if its current state allows it.

    Args:
        run_id: CrawlRun primary key
        target: Target status value
        strict: Raise TransitionError instead of returning False when the
            transition is not allowed

    Returns:
        True if this call changed the run's status
    """
    from apps.crawler.models import CrawlRun

    target_state = RunState.from_string(target)
    fields = {'status': target_state.value, 'updated_at': timezone.now()}
    if target_state.is_terminal:
        fields['completed_at'] = timezone.now()

    with transaction.atomic():
        updated = CrawlRun.objects.filter(
            id=run_id,
            status__in=sources_for(target_state),
        ).update(**fields)

        if updated:
            logger.info(f"Run {run_id} transitioned to {target_state.value}")
            return True

        current = CrawlRun.objects.filter(id=run_id).values_list('status', flat=True).first()

    if current == target_state.value and not target_state.is_terminal:
        return False
    if strict:
        raise TransitionError(run_id, current or 'missing', target_state.value)
    logger.debug(f"Run {run_id} left in {current}; {target_state.value} not allowed")
    return False
