from typing import Dict, List, Mapping, Optional

import pandas as pd

from .catalog import QuestionCatalog
from .evaluator import evaluate
from .models import Mode, SessionSummary, Stats, TypeStateRecord


class StatsAggregator:
    """Lifetime answer counters, fed only by real evaluations."""

    def __init__(self, stats: Optional[Stats] = None):
        self.stats = stats or Stats()

    def record(self, is_correct: bool):
        self.stats.total_answered += 1
        if is_correct:
            self.stats.correct_count += 1
        else:
            self.stats.wrong_count += 1
        self.stats.avg_score = self.correct_rate()

    def correct_rate(self) -> int:
        if self.stats.total_answered == 0:
            return 0
        return round(self.stats.correct_count / self.stats.total_answered * 100)

    def close_session(
        self, subject: str, type_name: str, mode: Mode, score: int, answered: int, total: int
    ):
        if answered == 0:
            return
        self.stats.history.append(
            SessionSummary(
                subject=subject,
                type=type_name,
                mode=mode,
                score=score,
                answered=answered,
                total=total,
            )
        )


def type_accuracy(
    subject: str,
    type_states: Mapping[str, TypeStateRecord],
    catalog: QuestionCatalog,
) -> Dict[str, int]:
    """Percentage of stored answers that are correct, per type of a subject."""
    types = catalog.get_types(subject)
    rows: List[dict] = []
    for type_name in types:
        record = type_states.get(f"{subject}_{type_name}")
        if record is None:
            continue
        entry = catalog.get_entry(subject, type_name)
        for index, answer in record.answers.items():
            if 0 <= index < len(entry):
                rows.append({"type": type_name, "correct": evaluate(entry[index], answer)})

    rates = {type_name: 0 for type_name in types}
    if not rows:
        return rates
    df = pd.DataFrame(rows)
    means = df.groupby("type", sort=False)["correct"].mean()
    for type_name, mean in means.items():
        rates[type_name] = int(round(mean * 100))
    return rates
