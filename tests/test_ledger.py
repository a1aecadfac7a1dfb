import pytest

from scene_regen.core.ledger import AttemptLedger
from scene_regen.core.models import AttemptResult, IssueType, QualityIssue, Severity
from scene_regen.core.persistence import InMemoryAttemptStore, SQLiteAttemptStore


@pytest.fixture(params=["memory", "sqlite"])
def ledger(request, tmp_path):
    if request.param == "memory":
        return AttemptLedger(InMemoryAttemptStore())
    store = SQLiteAttemptStore(str(tmp_path / "attempts.db"))
    request.addfinalizer(store.close)
    return AttemptLedger(store)


def record(ledger, scene_id, number, result=AttemptResult.FAILURE, issues=()):
    return ledger.record_attempt(
        scene_id,
        "proj-1",
        number,
        provider="kling-2.5-turbo",
        strategy="retry-same",
        prompt=f"prompt {number}",
        result=result,
        issues=issues,
        reasoning="test",
        confidence_score=0.4,
    )


def test_attempts_come_back_most_recent_first(ledger):
    for n in (1, 2, 3):
        record(ledger, "s1", n)

    attempts = ledger.get_attempts("s1", limit=10)

    assert [a.attempt_number for a in attempts] == [3, 2, 1]
    timestamps = [a.timestamp for a in attempts]
    assert timestamps == sorted(timestamps, reverse=True)


def test_limit_is_never_exceeded(ledger):
    for n in range(1, 6):
        record(ledger, "s1", n)

    assert [a.attempt_number for a in ledger.get_attempts("s1", limit=2)] == [5, 4]
    assert ledger.get_attempts("s1", limit=0) == []


def test_scenes_are_isolated(ledger):
    record(ledger, "s1", 1)
    record(ledger, "s2", 1)

    assert len(ledger.get_attempts("s1")) == 1
    assert ledger.get_attempts("unknown") == []


def test_clear_history_only_touches_one_scene(ledger):
    record(ledger, "s1", 1)
    record(ledger, "s1", 2)
    record(ledger, "s2", 1)

    assert ledger.clear_history("s1") == 2
    assert ledger.get_attempts("s1") == []
    assert len(ledger.get_attempts("s2")) == 1


def test_attempt_fields_survive_storage(ledger):
    issue = QualityIssue(IssueType.AI_TEXT_DETECTED, Severity.CRITICAL, "garbled sign", scene_index=2)
    written = record(ledger, "s1", 1, result=AttemptResult.PARTIAL, issues=[issue])

    stored = ledger.get_attempts("s1")[0]

    assert stored == written
    assert stored.issues == (issue,)
    assert stored.result is AttemptResult.PARTIAL
    assert stored.timestamp.tzinfo is not None


def test_sqlite_history_outlives_the_store(tmp_path):
    path = str(tmp_path / "attempts.db")
    first = SQLiteAttemptStore(path)
    record(AttemptLedger(first), "s1", 1)
    first.close()

    reopened = AttemptLedger(SQLiteAttemptStore(path))
    assert [a.prompt for a in reopened.get_attempts("s1")] == ["prompt 1"]
