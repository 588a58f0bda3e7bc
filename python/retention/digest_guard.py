"""
Digest safety guard.

Registries delete manifests by digest, not by tag. A deletion candidate whose
digest is also referenced by any non-candidate tag (retained or ignored) must
not be deleted, or the surviving tag would lose its content.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from retention.logging_utils import get_logger, with_fields
from retention.models import Classification, DeletionOutcome, DeletionRecord, TagDecision

logger = get_logger(__name__)


@dataclass
class GuardResult:
    deletable: List[TagDecision] = field(default_factory=list)
    protected: List[DeletionRecord] = field(default_factory=list)


def build_protection_set(decisions: Sequence[TagDecision]) -> Dict[str, List[str]]:
    """Map each digest to the tag names protecting it.

    Every image that is not a deletion candidate protects its digest,
    including ignored images. Insertion order follows ``decisions``.
    """
    protection: Dict[str, List[str]] = {}
    for decision in decisions:
        if decision.classification != Classification.DELETION_CANDIDATE:
            protection.setdefault(decision.image.digest, []).append(decision.image.tag)
    return protection


def guard_candidates(decisions: Sequence[TagDecision]) -> GuardResult:
    """Split deletion candidates into deletable ones and protected ones.

    Protected candidates get outcome SKIPPED_PROTECTED and their ``protected_by``
    set; one DeletionRecord is produced per protected digest.
    """
    protection = build_protection_set(decisions)
    result = GuardResult()
    protected_records: Dict[str, DeletionRecord] = {}

    for decision in decisions:
        if decision.classification != Classification.DELETION_CANDIDATE:
            continue
        image = decision.image
        protecting_tags = protection.get(image.digest)
        if not protecting_tags:
            with_fields(logger, repo=image.repository, tag=image.tag).info(
                "All tags for this image digest marked for deletion"
            )
            result.deletable.append(decision)
            continue

        also_used_by = ", ".join(protecting_tags)
        decision.outcome = DeletionOutcome.SKIPPED_PROTECTED
        decision.protected_by = also_used_by
        with_fields(logger, repo=image.repository, tag=image.tag, digest=image.digest).info(
            f"The underlying image is also used by non-deletable tags ({also_used_by}) - skipping deletion"
        )

        record = protected_records.get(image.digest)
        if record is None:
            record = DeletionRecord(
                digest=image.digest,
                tags=[],
                outcome=DeletionOutcome.SKIPPED_PROTECTED,
                reason=f"also used by {also_used_by}",
            )
            protected_records[image.digest] = record
            result.protected.append(record)
        record.tags.append(image.tag)

    return result
