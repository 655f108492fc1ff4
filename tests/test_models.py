"""
Tests for data models.
"""

import pytest
from gitmeta.models import (
    Closed, Open, SubmoduleDescriptor, SubmoduleChanges, SyncStatus, SyncOutcome,
    SyncReport, FetchOutcome, MetaRepoError, GitRepositoryError, SubmoduleNotFoundError,
    UnfetchedCommitError, TransportError, LocalChangesError
)


class TestVisibility:
    """Test Closed/Open tagged states."""

    def test_closed(self):
        state = Closed("a")
        assert state.is_open is False
        assert state == Closed("a")
        assert state != Closed("b")

    def test_open(self):
        state = Open("a", git_manager=object())
        assert state.is_open is True
        assert state.name == "a"

    def test_descriptor_without_visibility(self):
        descriptor = SubmoduleDescriptor(name="a", sha="1" * 40)
        assert descriptor.url is None
        assert descriptor.is_open is False

    def test_descriptor_open(self):
        descriptor = SubmoduleDescriptor(name="a", sha="1" * 40, visibility=Open("a", object()))
        assert descriptor.is_open is True


class TestSubmoduleChanges:
    """Test SubmoduleChanges model."""

    def test_empty(self):
        changes = SubmoduleChanges()
        assert changes.is_empty
        assert changes.all_names() == set()

    def test_all_names(self):
        changes = SubmoduleChanges(added={"a"}, changed={"b"}, removed={"c"})
        assert not changes.is_empty
        assert changes.all_names() == {"a", "b", "c"}


class TestSyncReport:
    """Test SyncReport aggregation."""

    def _report(self):
        return SyncReport(
            outcomes=[
                SyncOutcome(name="a"),
                SyncOutcome(name="b", status=SyncStatus.UPDATED),
                SyncOutcome(name="c", status=SyncStatus.FAILED, error=GitRepositoryError("boom")),
            ],
            session_id="20240101-120000",
        )

    def test_empty_report_is_ok(self):
        assert SyncReport().ok

    def test_failed_and_updated(self):
        report = self._report()
        assert not report.ok
        assert [o.name for o in report.failed] == ["c"]
        assert [o.name for o in report.updated] == ["b"]

    def test_get(self):
        report = self._report()
        assert report.get("b").status == SyncStatus.UPDATED
        assert report.get("missing") is None

    def test_fetch_outcome_ok(self):
        assert FetchOutcome(name="a", remote="origin").ok
        assert not FetchOutcome(name="a", error=TransportError("a", "origin")).ok


class TestExceptions:
    """Test custom exceptions."""

    def test_hierarchy(self):
        for error in (
            GitRepositoryError("x"),
            SubmoduleNotFoundError("x"),
            UnfetchedCommitError("a", "1" * 40),
            TransportError("a", "origin"),
            LocalChangesError("a", ["f"]),
        ):
            assert isinstance(error, MetaRepoError)

    def test_unfetched_commit(self):
        error = UnfetchedCommitError("libs/a", "abcdef0123456789" + "0" * 24)
        assert error.name == "libs/a"
        assert "abcdef01" in str(error)
        assert "libs/a" in str(error)

    def test_transport_error(self):
        error = TransportError("a", "origin", "could not read from remote")
        assert error.remote == "origin"
        assert str(error).endswith("could not read from remote")
        assert str(TransportError("a", "origin")) == "Failed to fetch remote 'origin' of submodule 'a'"

    def test_local_changes_truncates_paths(self):
        paths = [f"file{i}.txt" for i in range(8)]
        error = LocalChangesError("a", paths)
        assert error.paths == paths
        assert "file4.txt" in str(error)
        assert "file5.txt" not in str(error)
        assert "(8 total)" in str(error)

    def test_raise(self):
        with pytest.raises(MetaRepoError, match="uncommitted"):
            raise LocalChangesError("a", ["f"])
