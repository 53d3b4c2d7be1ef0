"""
Tests for session state, snapshots and reconciliation by question text.
"""

import random

import pytest

from shuati.errors import AlreadyAnsweredError
from shuati.models import Mode, Question, TypeStateRecord
from shuati.quiz import RandomBuilder
from shuati.session import QuizSession, TypeStateCache, state_key


def make_questions(n):
    return [Question(text=f"Q{i}", options=["A. x", "B. y"], answer="A") for i in range(n)]


def session_for(slots, mode=Mode.SEQUENCE):
    return QuizSession("马原", "单选题", mode, list(slots))


class TestSlotStateMachine:
    def test_record_updates_counters(self):
        session = session_for(make_questions(3))
        session.record("A", True)
        assert session.score == 1
        assert session.answered_count == 1
        assert session.answers == {0: "A"}
        assert session.is_answered

    def test_reanswer_rejected(self):
        session = session_for(make_questions(3))
        session.record("B", False)
        with pytest.raises(AlreadyAnsweredError):
            session.record("A", True)
        assert session.answered_count == 1

    def test_navigation_keeps_answered_flag(self):
        session = session_for(make_questions(3))
        session.record("A", True)
        assert session.next()
        assert not session.is_answered
        assert session.prev()
        assert session.is_answered

    def test_navigation_is_bounds_checked(self):
        session = session_for(make_questions(2))
        assert not session.prev()
        assert session.go_to(1)
        assert not session.next()
        assert session.current_index == 1

    def test_answered_count_matches_answers(self):
        session = session_for(make_questions(5))
        for correct in (True, False, True):
            session.record("A" if correct else "B", correct)
            session.next()
        assert session.answered_count == len(session.answers) == 3
        assert session.score == 2

    def test_empty_session(self):
        session = session_for([])
        assert session.total == 0
        assert session.current() is None
        assert session.progress() == 0.0
        assert session.first_unanswered() == 0


class TestFirstUnanswered:
    def test_lowest_gap(self):
        session = session_for(make_questions(4))
        session.answers = {0: "A", 1: "A", 3: "A"}
        assert session.first_unanswered() == 2

    def test_all_answered_goes_to_start(self):
        session = session_for(make_questions(2))
        session.answers = {0: "A", 1: "B"}
        session.current_index = 1
        session.jump_to_first_unanswered()
        assert session.current_index == 0


class TestSnapshot:
    def test_wrong_mode_never_snapshots(self):
        session = session_for(make_questions(2), Mode.WRONG)
        session.record("B", False)
        assert session.snapshot(make_questions(2)) is None

    def test_answers_keyed_by_catalog_position(self):
        catalog = make_questions(4)
        slots = [catalog[2], catalog[0], catalog[3], catalog[1]]
        session = session_for(slots, Mode.RANDOM)
        session.record("B", False)  # slot 0 holds Q2
        record = session.snapshot(catalog)
        assert record.answers == {2: "B"}
        assert record.answered_count == 1
        assert record.score == 0


class TestReconcile:
    def test_random_rebuild_keeps_answers_by_text(self):
        catalog = make_questions(10)
        record = TypeStateRecord(answers={1: "A", 4: "B", 9: "A"}, score=2, answered_count=3)
        for seed in range(5):
            slots = RandomBuilder(random.Random(seed)).build(catalog, [])
            session = session_for(slots, Mode.RANDOM)
            session.reconcile(record, catalog)
            by_text = {session.slots[i].text: a for i, a in session.answers.items()}
            assert by_text == {"Q1": "A", "Q4": "B", "Q9": "A"}
            assert session.answered_count == 3
            assert session.score == 2

    def test_snapshot_then_reconcile_round_trip(self):
        catalog = make_questions(6)
        first = session_for(RandomBuilder(random.Random(1)).build(catalog, []), Mode.RANDOM)
        first.go_to(2)
        first.record("A", True)
        first.go_to(4)
        first.record("B", False)
        answered = {first.slots[2].text: "A", first.slots[4].text: "B"}

        second = session_for(RandomBuilder(random.Random(2)).build(catalog, []), Mode.RANDOM)
        second.reconcile(first.snapshot(catalog), catalog)
        assert {second.slots[i].text: a for i, a in second.answers.items()} == answered

    def test_removed_questions_are_dropped(self):
        old_catalog = make_questions(3)
        new_catalog = [old_catalog[0], old_catalog[2]]
        record = TypeStateRecord(answers={0: "A", 1: "A"}, score=2, answered_count=2)
        session = session_for(new_catalog)
        # the record was taken against the old order
        session.reconcile(record, old_catalog)
        assert session.answers == {0: "A"}
        assert session.answered_count == 1

    def test_out_of_range_indexes_are_dropped(self):
        catalog = make_questions(2)
        session = session_for(catalog)
        session.reconcile(TypeStateRecord(answers={7: "A"}), catalog)
        assert session.answers == {}

    def test_wrong_mode_ignores_record(self):
        catalog = make_questions(2)
        session = session_for(catalog, Mode.WRONG)
        session.reconcile(TypeStateRecord(answers={0: "A"}, score=1, answered_count=1), catalog)
        assert session.answers == {}
        assert session.score == 0

    def test_no_record_resets(self):
        session = session_for(make_questions(2))
        session.answers = {0: "A"}
        session.reconcile(None, make_questions(2))
        assert session.answers == {}
        assert session.answered_count == 0


class TestTypeStateCache:
    def test_put_and_get(self):
        cache = TypeStateCache()
        key = state_key("马原", "单选题")
        cache.put(key, TypeStateRecord(score=1, answered_count=1, answers={0: "A"}))
        assert key == "马原_单选题"
        assert cache.get(key).answers == {0: "A"}
        assert key in cache

    def test_payload_keys_survive_json(self):
        cache = TypeStateCache({"s_t": TypeStateRecord(answers={3: "B"})})
        payload = cache.to_payload()
        restored = TypeStateCache.from_payload({"s_t": {**payload["s_t"], "answers": {"3": "B"}}})
        assert restored.get("s_t").answers == {3: "B"}

    def test_malformed_entries_dropped(self):
        cache = TypeStateCache.from_payload(
            {"good": {"score": 1}, "bad": {"score": "lots"}}
        )
        assert "good" in cache
        assert "bad" not in cache
