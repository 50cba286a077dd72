"""Core progress engine for careerloop."""

from .catalog import DEFAULT_CATALOG, default_definitions, load_catalog, load_catalog_file, sync_catalog
from .config_loader import (
    clear_config_cache,
    get_catalog_path,
    get_database_path,
    get_engine_config,
    get_logging_config,
    get_timezone,
    load_config,
    resolve_config_path,
)
from .errors import (
    CareerLoopError,
    EvidenceKindNotAccepted,
    InvalidEvidence,
    InvalidPeriodKey,
    InvalidReviewDecision,
    TaskDefinitionNotFound,
    UserNotFound,
    UserTaskNotFound,
)
from .period import Period, period_for_instant, period_from_key, resolve_period
from .progress_store import ProgressStore
from .progress_types import Evidence, Signal, TaskDefinition, VerificationOutcome
from .rule_engine import (
    BonusTier,
    EvidenceOnlyRule,
    HeadlineRule,
    RuleRegistry,
    SignalThresholdRule,
    VerificationWindow,
    get_default_registry,
    verify,
)
from .scoring import award_points, ledger_activity_id, recompute_summary
from .task_instantiator import ensure_period, instantiate_period, reset_period
from .verification_service import VerificationService

__all__ = [
    "BonusTier",
    "CareerLoopError",
    "DEFAULT_CATALOG",
    "Evidence",
    "EvidenceKindNotAccepted",
    "EvidenceOnlyRule",
    "HeadlineRule",
    "InvalidEvidence",
    "InvalidPeriodKey",
    "InvalidReviewDecision",
    "Period",
    "ProgressStore",
    "RuleRegistry",
    "Signal",
    "SignalThresholdRule",
    "TaskDefinition",
    "TaskDefinitionNotFound",
    "UserNotFound",
    "UserTaskNotFound",
    "VerificationOutcome",
    "VerificationService",
    "VerificationWindow",
    "award_points",
    "clear_config_cache",
    "default_definitions",
    "ensure_period",
    "get_catalog_path",
    "get_database_path",
    "get_default_registry",
    "get_engine_config",
    "get_logging_config",
    "get_timezone",
    "instantiate_period",
    "ledger_activity_id",
    "load_catalog",
    "load_catalog_file",
    "load_config",
    "period_for_instant",
    "period_from_key",
    "recompute_summary",
    "reset_period",
    "resolve_config_path",
    "resolve_period",
    "sync_catalog",
    "verify",
]
