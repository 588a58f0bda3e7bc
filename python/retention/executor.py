"""
Deletion executor.

Issues at most one delete call per unique digest. A digest that fails is
recorded FAILED for this run only; the next run evaluates it from scratch.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from retention.error_utils import DeleteError
from retention.logging_utils import get_logger, log_exception, with_fields
from retention.models import DeletionOutcome, DeletionRecord, TagDecision

logger = get_logger(__name__)


class Deleter(ABC):
    """Capability to delete a manifest by digest"""

    @abstractmethod
    def delete_manifest(self, repository: str, digest: str) -> None:
        """Delete one manifest.

        Raises:
            DeleteError: If the registry does not confirm the deletion
        """


class DeletionExecutor:
    """Deletes (or, in dry-run mode, only reports) unprotected candidate digests"""

    def __init__(self, deleter: Deleter, dry_run: bool = False):
        self.deleter = deleter
        self.dry_run = dry_run

    def execute(self, repository: str, candidates: Sequence[TagDecision]) -> List[DeletionRecord]:
        """Process the deletable candidates of one repository, in order.

        Sets ``outcome`` (and ``reason`` on failure) on every candidate and
        returns one DeletionRecord per unique digest.
        """
        records: Dict[str, DeletionRecord] = {}
        repo_log = with_fields(logger, repo=repository)

        for decision in candidates:
            image = decision.image
            log = repo_log.with_fields(tag=image.tag, digest=image.digest)

            record = records.get(image.digest)
            if record is not None:
                record.tags.append(image.tag)
                decision.outcome = DeletionOutcome.SKIPPED_ALREADY_PROCESSED
                decision.reason = f"digest already {record.outcome.value} this run"
                log.debug("Image under tag already processed")
                continue

            record = self._process_digest(repository, decision, log)
            records[image.digest] = record

        return list(records.values())

    def _process_digest(self, repository: str, decision: TagDecision, log) -> DeletionRecord:
        image = decision.image
        record = DeletionRecord(digest=image.digest, tags=[image.tag], outcome=DeletionOutcome.DELETED)

        if self.dry_run:
            log.info(f"Not actually deleting image (-dry=True), created {image.created_at.isoformat()}")
            record.outcome = DeletionOutcome.SKIPPED_DRY_RUN
            record.reason = "dry run"
        else:
            log.info(f"Deleting image (-dry=False), created {image.created_at.isoformat()}")
            try:
                self.deleter.delete_manifest(repository, image.digest)
            except DeleteError as e:
                log.error(f"Could not delete image! ({e.reason})")
                record.outcome = DeletionOutcome.FAILED
                record.reason = e.reason
            except Exception as e:
                log_exception(logger, f"Unexpected error deleting {repository}@{image.digest}", e)
                record.outcome = DeletionOutcome.FAILED
                record.reason = str(e)

        decision.outcome = record.outcome
        decision.reason = record.reason
        return record
