from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# --- Enums ---
class QuestionType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"
    TRUEFALSE = "truefalse"


class Mode(str, Enum):
    SEQUENCE = "sequence"
    RANDOM = "random"
    MEMORIZE = "memorize"
    WRONG = "wrong"


# Bank files name their types in the language of the bank.
TYPE_ALIASES: Dict[str, QuestionType] = {
    "单选题": QuestionType.SINGLE,
    "多选题": QuestionType.MULTIPLE,
    "判断题": QuestionType.TRUEFALSE,
    "single": QuestionType.SINGLE,
    "multiple": QuestionType.MULTIPLE,
    "truefalse": QuestionType.TRUEFALSE,
}


def question_type_for(type_name: str) -> QuestionType:
    return TYPE_ALIASES.get(type_name.strip().lower(), QuestionType.SINGLE)


# --- Models ---
class Question(BaseModel):
    text: str
    options: List[str] = Field(default_factory=list)
    answer: str
    type: QuestionType = QuestionType.SINGLE


# One subject's bank: type name -> question text -> Question, in bank order.
QuestionSet = Dict[str, Dict[str, Question]]


class TypeStateRecord(BaseModel):
    """Progress saved for one (subject, type) pair.

    ``answers`` is keyed by the question's index in catalog order, so the
    record can be re-applied to any later ordering of the same questions.
    """

    score: int = 0
    answered_count: int = 0
    answers: Dict[int, str] = Field(default_factory=dict)
    is_answered: bool = False


class SessionSummary(BaseModel):
    subject: str
    type: str
    mode: Mode
    score: int
    answered: int
    total: int
    finished_at: datetime = Field(default_factory=datetime.now)


class Stats(BaseModel):
    total_answered: int = 0
    correct_count: int = 0
    wrong_count: int = 0
    avg_score: int = 0
    history: List[SessionSummary] = Field(default_factory=list)


class UserAggregate(BaseModel):
    answers_by_mode: Dict[str, Dict[int, str]] = Field(default_factory=dict)
    wrong_ledger: List[Question] = Field(default_factory=list)
    stats: Stats = Field(default_factory=Stats)
    type_states: Dict[str, TypeStateRecord] = Field(default_factory=dict)


class AnswerRecord(BaseModel):
    text: str
    user_answer: str
    correct_answer: str
    is_correct: bool


class SessionView(BaseModel):
    """What the UI surface needs to draw the active slot."""

    subject: str
    type: str
    mode: Mode
    current_index: int
    total_questions: int
    question: Optional[Question] = None
    user_answer: Optional[str] = None
    is_answered: bool = False
    revealed_answer: Optional[str] = None
    score: int = 0
    answered_count: int = 0
    progress: float = 0.0
