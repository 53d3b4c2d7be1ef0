from string import ascii_uppercase
from typing import Iterable, List, Union

from .errors import IncompleteSubmissionError
from .models import Question, QuestionType

# True/false questions always offer these two pseudo-options.
TRUEFALSE_OPTIONS: List[str] = ["A. 正确", "B. 错误"]
TRUE_LABEL = "正确"
FALSE_LABEL = "错误"

_TRUEFALSE_CHOICES = {
    "A": TRUE_LABEL,
    "B": FALSE_LABEL,
    "TRUE": TRUE_LABEL,
    "FALSE": FALSE_LABEL,
    TRUE_LABEL: TRUE_LABEL,
    FALSE_LABEL: FALSE_LABEL,
}

Selection = Union[str, Iterable[str]]


def option_label(option: str) -> str:
    """The letter an option is selected by, e.g. ``"A"`` for ``"A. x"``."""
    return option.strip()[:1].upper()


def options_for(question: Question) -> List[str]:
    if question.type == QuestionType.TRUEFALSE:
        return list(TRUEFALSE_OPTIONS)
    return list(question.options)


def canonical_answer(qtype: QuestionType, raw: str) -> str:
    if qtype == QuestionType.MULTIPLE:
        return "".join(sorted(raw.strip().upper()))
    return raw.strip()


def normalize_selection(qtype: QuestionType, selection: Selection) -> str:
    """Turn the labels a user picked into the submitted answer string.

    Raises IncompleteSubmissionError when nothing usable was picked; the
    evaluator itself is never called with an empty selection.
    """
    if isinstance(selection, str):
        labels = [selection] if qtype != QuestionType.MULTIPLE else list(selection)
    else:
        labels = list(selection)
    labels = [label.strip() for label in labels if label and label.strip()]
    if not labels:
        raise IncompleteSubmissionError("请至少选择一个答案")

    if qtype == QuestionType.MULTIPLE:
        picked = {option_label(label) for label in labels}
        picked = {label for label in picked if label in ascii_uppercase}
        if not picked:
            raise IncompleteSubmissionError("请至少选择一个答案")
        return "".join(sorted(picked))
    if len(labels) != 1:
        raise IncompleteSubmissionError("请先选择一个答案")

    label = labels[0]
    if qtype == QuestionType.TRUEFALSE:
        mapped = _TRUEFALSE_CHOICES.get(label.upper()) or _TRUEFALSE_CHOICES.get(label)
        if mapped is None:
            # full pseudo-option text such as "B. 错误"
            mapped = _TRUEFALSE_CHOICES.get(option_label(label))
        if mapped is None:
            raise IncompleteSubmissionError(f"Unknown true/false choice: {label}")
        return mapped
    return option_label(label)


def evaluate(question: Question, submitted: str) -> bool:
    if question.type == QuestionType.MULTIPLE:
        return canonical_answer(QuestionType.MULTIPLE, submitted) == canonical_answer(
            QuestionType.MULTIPLE, question.answer
        )
    return submitted == question.answer.strip()
