"""moltmark — Capability certification ledger and trust scoring for AI agents."""

__version__ = "0.1.0"

from moltmark.errors import (
    CertificationError,
    ConfigurationError,
    ConstraintViolationError,
    InvalidInputError,
    StorageUnavailableError,
)
from moltmark.models import Agent, Capability, ResultCounts, TestOutcome, TestResult
from moltmark.scoring import ScoreResult, compute_trust_score, recompute, stamp_certification
from moltmark.store import CertificationStore, MemoryStore, StoreTransaction
from moltmark.service import (
    CertificationService,
    CertificationStatus,
    TestReport,
    Verification,
)
from moltmark.config import Settings, build_store

__all__ = [
    "__version__",
    "CertificationError",
    "ConfigurationError",
    "ConstraintViolationError",
    "InvalidInputError",
    "StorageUnavailableError",
    "Agent",
    "Capability",
    "ResultCounts",
    "TestOutcome",
    "TestResult",
    "ScoreResult",
    "compute_trust_score",
    "recompute",
    "stamp_certification",
    "CertificationStore",
    "MemoryStore",
    "StoreTransaction",
    "CertificationService",
    "CertificationStatus",
    "TestReport",
    "Verification",
    "Settings",
    "build_store",
]
