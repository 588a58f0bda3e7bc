"""
Retention run orchestration.

Each repository goes through filter -> catalog -> classifier -> digest guard
-> executor on its own. Repositories share nothing but the read-only policy,
so they are processed by a bounded thread pool and a failure in one never
affects another.
"""

import concurrent.futures
from typing import List, Optional, Sequence

from retention.catalog import build_catalog
from retention.classifier import classify_images
from retention.config_manager import RetentionPolicy
from retention.digest_guard import guard_candidates
from retention.error_utils import FetchError
from retention.executor import DeletionExecutor
from retention.filters import repository_matches
from retention.logging_utils import get_logger, log_exception, with_fields
from retention.models import Classification, RepositoryResult, RepositoryStatus, RunSummary

logger = get_logger(__name__)


class RegistryPruner:
    """Applies one RetentionPolicy to the repositories of one registry"""

    def __init__(self, client, policy: RetentionPolicy, executor: Optional[DeletionExecutor] = None):
        """
        Args:
            client: Registry client (catalog reads and, through the executor, deletes)
            policy: Frozen run configuration
            executor: Deletion executor (defaults to one deleting through ``client``)
        """
        self.client = client
        self.policy = policy
        self.executor = executor or DeletionExecutor(client, dry_run=policy.dry_run)

    def process_repository(self, repository: str) -> RepositoryResult:
        log = with_fields(logger, repo=repository)

        if not repository_matches(repository, self.policy.repository_pattern):
            log.debug(f"Ignore non matching repository (-repo={self.policy.repository_pattern.pattern})")
            return RepositoryResult(repository, RepositoryStatus.SKIPPED_FILTER)

        try:
            images = build_catalog(self.client, repository)
        except FetchError as e:
            log.error("Error obtaining tag data - skipping this repo")
            return RepositoryResult(repository, RepositoryStatus.SKIPPED_FETCH_ERROR, error=str(e))

        log.debug("Analyzing tags...")
        decisions = classify_images(images, self.policy)
        if not any(decision.classification != Classification.IGNORED for decision in decisions):
            log.debug("Ignore repository with no matching tags")
            return RepositoryResult(repository, RepositoryStatus.EMPTY, decisions=decisions)

        guarded = guard_candidates(decisions)
        deletions = guarded.protected + self.executor.execute(repository, guarded.deletable)

        result = RepositoryResult(repository, RepositoryStatus.PROCESSED, decisions=decisions, deletions=deletions)
        log.info(
            f"Repository done: {result.retained} retained, {result.protected} protected, "
            f"{result.deleted} deleted, {result.would_delete} would delete, {result.failed} failed"
        )
        return result

    def _process_isolated(self, repository: str) -> RepositoryResult:
        try:
            return self.process_repository(repository)
        except Exception as e:
            log_exception(logger, f"Unexpected error processing repository {repository} - skipping this repo", e)
            return RepositoryResult(repository, RepositoryStatus.SKIPPED_FETCH_ERROR, error=str(e))

    def run(self, repositories: Optional[Sequence[str]] = None, registry_url: str = "") -> RunSummary:
        """Process every repository and return the results in catalog order.

        Args:
            repositories: Names to process (listed from the registry if None)
            registry_url: Recorded in the summary

        Raises:
            ConnectivityError: If the repository catalog cannot be fetched
        """
        if repositories is None:
            repositories = self.client.list_repositories(self.policy.repository_limit)
            logger.info(f"Successfully fetched repositories. (count: {len(repositories)}, entries: {list(repositories)})")

        summary = RunSummary(
            registry_url=registry_url or getattr(self.client, "registry_url", ""),
            deadline=self.policy.deadline,
            dry_run=self.policy.dry_run,
        )
        results: List[Optional[RepositoryResult]] = [None] * len(repositories)

        workers = max(1, min(self.policy.max_workers, len(repositories) or 1))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._process_isolated, repository): index
                for index, repository in enumerate(repositories)
            }
            for future in concurrent.futures.as_completed(futures):
                results[futures[future]] = future.result()

        summary.results = results
        return summary
