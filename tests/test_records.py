"""Tests for change records and cleanup reports."""

from selsync.models.records import (
    ChangeRecord,
    CleanupReport,
    LocalPackageOutcome,
    RemoteOutcome,
    RevertOutcome,
)


def _record(**overrides) -> ChangeRecord:
    values = dict(
        resource_id="dev-api-app",
        previous_value=1,
        new_value=2,
        published_artifact_id="dev-api-app",
        published_artifact_version="0.1.1",
        created_at_revision="0.1.0",
    )
    values.update(overrides)
    return ChangeRecord(**values)


def test_commit_message_subject_and_trailers():
    message = _record().to_commit_message()
    lines = message.splitlines()

    assert lines[0] == "Demo: Scale dev-api-app from 1 to 2 replicas (Helm workflow selective sync test)"
    assert "Selsync-Artifact-Version: 0.1.1" in lines
    assert "Selsync-Base-Revision: 0.1.0" in lines


def test_record_recovered_from_commit_message():
    record = _record()
    parsed = ChangeRecord.from_commit_message(record.to_commit_message(), "abc1234")

    assert parsed is not None
    assert parsed.commit_sha == "abc1234"
    assert parsed.previous_value == 1
    assert parsed.new_value == 2
    assert parsed.published_artifact_version == "0.1.1"


def test_other_commits_are_not_records():
    assert ChangeRecord.from_commit_message("Fix typo in README\n") is None
    revert = 'Revert "Demo: Scale dev-api-app from 1 to 2 replicas"\n\nThis reverts commit abc.\n'
    assert ChangeRecord.from_commit_message(revert) is None
    # Subject alone, as written by older tooling, carries no artifact version
    assert ChangeRecord.from_commit_message("Demo: Scale dev-api-app from 1 to 2 replicas\n") is None


def test_cleanup_report_ok():
    report = CleanupReport(local_revert=RevertOutcome.SUCCESS, remote_cleanup=RemoteOutcome.SKIPPED_WARNING)
    assert report.ok
    assert "skipped-warning" in report.summary()

    assert CleanupReport(local_revert=RevertOutcome.ALREADY_REVERTED).ok
    assert not CleanupReport(local_revert=RevertOutcome.FAILED).ok
    assert CleanupReport().local_package == LocalPackageOutcome.SKIPPED
