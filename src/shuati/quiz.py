import random
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .models import Mode, Question


# --- Strategy Pattern: Working-Set Builders ---
class WorkingSetBuilder(ABC):
    """Abstract Base Class for the per-mode ordering of a session's slots."""

    @abstractmethod
    def build(
        self, catalog_entry: Sequence[Question], ledger: Sequence[Question]
    ) -> List[Question]:
        pass


class SequenceBuilder(WorkingSetBuilder):
    """Sequence and memorize modes: catalog order, unmodified."""

    def build(
        self, catalog_entry: Sequence[Question], ledger: Sequence[Question]
    ) -> List[Question]:
        return list(catalog_entry)


class RandomBuilder(WorkingSetBuilder):
    """Random mode: a fresh uniform permutation on every entry."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def build(
        self, catalog_entry: Sequence[Question], ledger: Sequence[Question]
    ) -> List[Question]:
        slots = list(catalog_entry)
        self.rng.shuffle(slots)
        return slots


class WrongBuilder(WorkingSetBuilder):
    """Wrong mode: the ledger's current entries, no catalog involvement."""

    def build(
        self, catalog_entry: Sequence[Question], ledger: Sequence[Question]
    ) -> List[Question]:
        return [q.model_copy(deep=True) for q in ledger]


class WorkingSetFactory:
    """Factory to select the builder for a mode."""

    @staticmethod
    def create(mode: Mode, rng: Optional[random.Random] = None) -> WorkingSetBuilder:
        if mode == Mode.RANDOM:
            return RandomBuilder(rng)
        elif mode == Mode.WRONG:
            return WrongBuilder()
        else:
            return SequenceBuilder()
