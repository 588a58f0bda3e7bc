"""
Value objects shared by the retention pipeline.

Images are rebuilt from live registry state on every run; nothing here is
persisted between runs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Classification(Enum):
    """Tag-level retention decision"""

    IGNORED = "ignored"
    RETAINED_RECENCY = "retained_recency"
    RETAINED_NOT_EXPIRED = "retained_not_expired"
    DELETION_CANDIDATE = "deletion_candidate"


class DeletionOutcome(Enum):
    """What happened to a deletion candidate"""

    DELETED = "deleted"
    SKIPPED_PROTECTED = "skipped_protected"
    SKIPPED_ALREADY_PROCESSED = "skipped_already_processed"
    SKIPPED_DRY_RUN = "skipped_dry_run"
    FAILED = "failed"


class RepositoryStatus(Enum):
    PROCESSED = "processed"
    EMPTY = "empty"
    SKIPPED_FILTER = "skipped_filter"
    SKIPPED_FETCH_ERROR = "skipped_fetch_error"


@dataclass(frozen=True)
class TagDescriptor:
    digest: str
    media_type: Optional[str] = None


@dataclass(frozen=True)
class Image:
    """One (repository, tag) observation of registry content.

    Several images may share a digest; the digest identifies the manifest
    content, not the tag.
    """

    repository: str
    tag: str
    digest: str
    created_at: datetime
    config_digest: Optional[str] = None


@dataclass
class TagDecision:
    """Audit entry for one image: how it was classified and what became of it"""

    image: Image
    classification: Classification
    outcome: Optional[DeletionOutcome] = None
    protected_by: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.image.tag,
            "digest": self.image.digest,
            "created_at": self.image.created_at.isoformat(),
            "classification": self.classification.value,
            "outcome": self.outcome.value if self.outcome else None,
            "protected_by": self.protected_by,
            "reason": self.reason,
        }


@dataclass
class DeletionRecord:
    """Outcome for one unique digest among the deletion candidates"""

    digest: str
    tags: List[str]
    outcome: DeletionOutcome
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "digest": self.digest,
            "tags": list(self.tags),
            "outcome": self.outcome.value,
            "reason": self.reason,
        }


@dataclass
class RepositoryResult:
    repository: str
    status: RepositoryStatus
    decisions: List[TagDecision] = field(default_factory=list)
    deletions: List[DeletionRecord] = field(default_factory=list)
    error: Optional[str] = None

    def _count(self, outcome: DeletionOutcome) -> int:
        return sum(1 for record in self.deletions if record.outcome == outcome)

    @property
    def deleted(self) -> int:
        return self._count(DeletionOutcome.DELETED)

    @property
    def failed(self) -> int:
        return self._count(DeletionOutcome.FAILED)

    @property
    def would_delete(self) -> int:
        return self._count(DeletionOutcome.SKIPPED_DRY_RUN)

    @property
    def protected(self) -> int:
        return self._count(DeletionOutcome.SKIPPED_PROTECTED)

    @property
    def retained(self) -> int:
        return sum(
            1
            for decision in self.decisions
            if decision.classification in (Classification.RETAINED_RECENCY, Classification.RETAINED_NOT_EXPIRED)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "status": self.status.value,
            "error": self.error,
            "counts": {
                "tags": len(self.decisions),
                "retained": self.retained,
                "deleted": self.deleted,
                "would_delete": self.would_delete,
                "protected": self.protected,
                "failed": self.failed,
            },
            "decisions": [decision.to_dict() for decision in self.decisions],
            "deletions": [record.to_dict() for record in self.deletions],
        }


@dataclass
class RunSummary:
    """All repository results of one run, in catalog order"""

    registry_url: str
    deadline: datetime
    dry_run: bool
    results: List[RepositoryResult] = field(default_factory=list)

    def total(self, attribute: str) -> int:
        return sum(getattr(result, attribute) for result in self.results)

    @property
    def skipped_repositories(self) -> List[str]:
        return [
            result.repository for result in self.results if result.status == RepositoryStatus.SKIPPED_FETCH_ERROR
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {
                "registry_url": self.registry_url,
                "deadline": self.deadline.isoformat(),
                "dry_run": self.dry_run,
            },
            "summary": {
                "repositories": len(self.results),
                "skipped_repositories": self.skipped_repositories,
                "deleted": self.total("deleted"),
                "would_delete": self.total("would_delete"),
                "protected": self.total("protected"),
                "failed": self.total("failed"),
            },
            "repositories": [result.to_dict() for result in self.results],
        }
