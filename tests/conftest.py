"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory registry plus policy/image builders shared by the
pipeline tests.
"""
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

from retention.config_manager import RetentionPolicy  # noqa: E402
from retention.error_utils import DeleteError, FetchError  # noqa: E402
from retention.executor import Deleter  # noqa: E402
from retention.models import Image, TagDecision, TagDescriptor  # noqa: E402

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeRegistry(Deleter):
    """In-memory registry with the same surface as RegistryClient.

    Deleting a manifest removes every tag pointing at its digest, like a real
    registry does.
    """

    def __init__(self, registry_url="http://fake-registry:5000"):
        self.registry_url = registry_url
        self.repositories = {}
        self.failing_manifests = set()
        self.failing_tag_lists = set()
        self.failing_deletes = {}
        self.delete_calls = []
        self.fetch_calls = []

    def add_tag(self, repository, tag, digest, age_days):
        self.repositories.setdefault(repository, {})[tag] = (digest, NOW - timedelta(days=age_days))
        return self

    def list_repositories(self, limit):
        return list(self.repositories)[:limit]

    def list_tags(self, repository):
        self.fetch_calls.append(("list_tags", repository))
        if repository in self.failing_tag_lists:
            raise FetchError(repository, None, "could not list tags (HTTP 500)")
        return list(self.repositories.get(repository, {}))

    def get_tag_descriptor(self, repository, tag):
        self.fetch_calls.append(("descriptor", repository, tag))
        try:
            digest, _ = self.repositories[repository][tag]
        except KeyError:
            raise FetchError(repository, tag, "could not fetch tag (HTTP 404 Not Found)", 404)
        return TagDescriptor(digest=digest)

    def get_manifest(self, repository, digest):
        self.fetch_calls.append(("manifest", repository, digest))
        if (repository, digest) in self.failing_manifests:
            raise FetchError(repository, digest, "could not fetch manifest (HTTP 500)", 500)
        return {"schemaVersion": 2, "config": {"digest": f"config-{digest}"}}

    def get_config_blob(self, repository, config_digest):
        self.fetch_calls.append(("blob", repository, config_digest))
        digest = config_digest[len("config-"):]
        for stored_digest, created in self.repositories[repository].values():
            if stored_digest == digest:
                return {"created": created.isoformat().replace("+00:00", "Z")}
        raise FetchError(repository, config_digest, "blob unknown", 404)

    def delete_manifest(self, repository, digest):
        self.delete_calls.append((repository, digest))
        if digest in self.failing_deletes:
            raise DeleteError(repository, digest, self.failing_deletes[digest], 500)
        tags = self.repositories.get(repository, {})
        remaining = {tag: value for tag, value in tags.items() if value[0] != digest}
        if len(remaining) == len(tags):
            raise DeleteError(repository, digest, "manifest unknown", 404)
        self.repositories[repository] = remaining


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def make_policy():
    """Build a RetentionPolicy; the deadline defaults to 30 days before NOW"""

    def _make(latest=1, tag=".*", ntag=None, repo=".*", dry_run=False, deadline_days=30, max_workers=1, limit=100):
        return RetentionPolicy(
            repository_pattern=re.compile(repo),
            tag_pattern=re.compile(tag),
            exclude_tag_pattern=re.compile(ntag) if ntag else None,
            deadline=NOW - timedelta(days=deadline_days),
            latest=latest,
            dry_run=dry_run,
            repository_limit=limit,
            max_workers=max_workers,
        )

    return _make


@pytest.fixture
def make_image():
    def _make(tag, digest, age_days, repository="app"):
        return Image(repository=repository, tag=tag, digest=digest, created_at=NOW - timedelta(days=age_days))

    return _make


@pytest.fixture
def make_candidate(make_image):
    from retention.models import Classification

    def _make(tag, digest, age_days=90, repository="app"):
        return TagDecision(image=make_image(tag, digest, age_days, repository), classification=Classification.DELETION_CANDIDATE)

    return _make
