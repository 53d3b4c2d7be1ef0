import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from pydantic import ValidationError

from .errors import AlreadyAnsweredError
from .evaluator import evaluate
from .models import Mode, Question, TypeStateRecord

logger = logging.getLogger(__name__)


def state_key(subject: str, type_name: str) -> str:
    return f"{subject}_{type_name}"


class QuizSession:
    """Live state of one (subject, type, mode) attempt.

    Slot indexes only mean something inside this instance. Anything that
    outlives it goes through ``snapshot`` and ``reconcile``, which join on
    question text.
    """

    def __init__(self, subject: str, type_name: str, mode: Mode, slots: List[Question]):
        self.subject = subject
        self.type_name = type_name
        self.mode = mode
        self.slots = slots
        self.current_index = 0
        self.answers: Dict[int, str] = {}
        self.score = 0
        self.answered_count = 0
        self.revealed: Set[int] = set()
        # answers recorded in this instance, as opposed to restored ones
        self.submitted = 0

    @property
    def key(self) -> str:
        return state_key(self.subject, self.type_name)

    @property
    def total(self) -> int:
        return len(self.slots)

    @property
    def is_answered(self) -> bool:
        return self.current_index in self.answers or self.current_index in self.revealed

    def current(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.slots):
            return self.slots[self.current_index]
        return None

    def progress(self) -> float:
        if not self.slots:
            return 0.0
        return len(self.answers) / len(self.slots)

    # --- Navigation ---
    def go_to(self, index: int) -> bool:
        if not (0 <= index < len(self.slots)):
            return False
        self.current_index = index
        return True

    def next(self) -> bool:
        return self.go_to(self.current_index + 1)

    def prev(self) -> bool:
        return self.go_to(self.current_index - 1)

    def first_unanswered(self) -> int:
        for index in range(len(self.slots)):
            if index not in self.answers:
                return index
        return 0

    def jump_to_first_unanswered(self):
        self.current_index = self.first_unanswered()

    # --- Answering ---
    def record(self, submitted: str, is_correct: bool):
        if self.is_answered:
            raise AlreadyAnsweredError(f"Question {self.current_index + 1} already answered")
        self.answers[self.current_index] = submitted
        self.answered_count += 1
        if is_correct:
            self.score += 1
        self.submitted += 1

    def reveal(self) -> Optional[str]:
        question = self.current()
        if question is None:
            return None
        self.revealed.add(self.current_index)
        return question.answer

    # --- Snapshot / reconciliation ---
    def snapshot(self, catalog_order: Sequence[Question]) -> Optional[TypeStateRecord]:
        """Progress keyed by catalog position; None in wrong mode."""
        if self.mode == Mode.WRONG:
            return None
        catalog_index = {q.text: i for i, q in enumerate(catalog_order)}
        answers = {}
        for slot, answer in self.answers.items():
            index = catalog_index.get(self.slots[slot].text)
            if index is not None:
                answers[index] = answer
        return TypeStateRecord(
            score=self.score,
            answered_count=self.answered_count,
            answers=answers,
            is_answered=self.is_answered,
        )

    def reconcile(self, record: Optional[TypeStateRecord], catalog_order: Sequence[Question]):
        """Re-key a stored record onto this session's slots by question text.

        Stored answers whose question no longer exists are dropped. Counters
        are recomputed from the answers that survived.
        """
        self.answers = {}
        self.score = 0
        self.answered_count = 0
        if record is None or self.mode == Mode.WRONG:
            return

        slot_of = {q.text: i for i, q in enumerate(self.slots)}
        for index, answer in record.answers.items():
            if not (0 <= index < len(catalog_order)):
                continue
            slot = slot_of.get(catalog_order[index].text)
            if slot is not None:
                self.answers[slot] = answer

        self.answered_count = len(self.answers)
        self.score = sum(
            1 for slot, answer in self.answers.items() if evaluate(self.slots[slot], answer)
        )
        if len(self.answers) != len(record.answers):
            logger.info(
                f"Dropped {len(record.answers) - len(self.answers)} stale answers for {self.key}"
            )


class TypeStateCache:
    """Snapshots of sessions the user has left, keyed ``subject_type``."""

    def __init__(self, records: Optional[Mapping[str, TypeStateRecord]] = None):
        self._records: Dict[str, TypeStateRecord] = dict(records or {})

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, key: str) -> Optional[TypeStateRecord]:
        return self._records.get(key)

    def put(self, key: str, record: TypeStateRecord):
        self._records[key] = record

    def records(self) -> Dict[str, TypeStateRecord]:
        return dict(self._records)

    def to_payload(self) -> Dict[str, Any]:
        return {key: record.model_dump(mode="json") for key, record in self._records.items()}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TypeStateCache":
        records = {}
        for key, raw in payload.items():
            try:
                records[key] = TypeStateRecord.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Dropping malformed type state {key}: {e.error_count()} errors")
        return cls(records)
