"""Domain errors raised across the progress engine."""

from __future__ import annotations


class CareerLoopError(Exception):
    """Base class for careerloop domain errors."""


class UserNotFound(CareerLoopError, LookupError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User profile '{user_id}' does not exist.")
        self.user_id = user_id


class UserTaskNotFound(CareerLoopError, LookupError):
    def __init__(self, user_task_id: str) -> None:
        super().__init__(f"User task '{user_task_id}' does not exist.")
        self.user_task_id = user_task_id


class TaskDefinitionNotFound(CareerLoopError, LookupError):
    def __init__(self, task_code: str) -> None:
        super().__init__(f"Task definition '{task_code}' does not exist.")
        self.task_code = task_code


class InvalidPeriodKey(CareerLoopError, ValueError):
    def __init__(self, key: str, reason: str = "expected YYYY-WW") -> None:
        super().__init__(f"Invalid period key '{key}': {reason}.")
        self.key = key


class InvalidEvidence(CareerLoopError, ValueError):
    """Evidence payload does not match its kind."""


class InvalidReviewDecision(CareerLoopError, ValueError):
    """Review decision is unknown or not allowed for the task's current status."""


class EvidenceKindNotAccepted(CareerLoopError, ValueError):
    def __init__(self, task_code: str, kind: str, accepted: list[str]) -> None:
        accepted_str = ", ".join(accepted) or "(none)"
        super().__init__(f"Task '{task_code}' does not accept {kind} evidence (accepted: {accepted_str}).")
        self.task_code = task_code
        self.kind = kind
        self.accepted = accepted
