from typing import Any, Iterable, List, Optional

from .models import Question


class WrongLedger:
    """Every question answered incorrectly, in the order it was missed.

    Entries are value copies and are never deduplicated: a question missed
    three times appears three times.
    """

    def __init__(self, entries: Optional[Iterable[Question]] = None):
        self._entries: List[Question] = [q.model_copy(deep=True) for q in entries or []]

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, question: Question):
        self._entries.append(question.model_copy(deep=True))

    def entries(self) -> List[Question]:
        return [q.model_copy(deep=True) for q in self._entries]

    def clear(self):
        self._entries = []

    def to_payload(self) -> List[dict]:
        return [q.model_dump(mode="json") for q in self._entries]

    @classmethod
    def from_payload(cls, payload: List[Any]) -> "WrongLedger":
        return cls(Question.model_validate(item) for item in payload)
