import glob
import json
import logging
import os
from typing import Any, Dict, List

import pandas as pd

from .models import Question, QuestionSet, question_type_for

logger = logging.getLogger(__name__)

CSV_COLUMNS = {"type", "text", "options", "answer"}

DEMO_BANK: Dict[str, Dict[str, Dict[str, Any]]] = {
    "单选题": {
        "马克思主义最根本的世界观和方法论是": {
            "options": ["A. 辩证唯物主义和历史唯物主义", "B. 唯心主义", "C. 形而上学"],
            "answer": "A",
        },
    },
    "多选题": {
        "马克思主义的鲜明特征包括": {
            "options": ["A. 科学性", "B. 封闭性", "C. 人民性", "D. 实践性"],
            "answer": "ACD",
        },
    },
    "判断题": {
        "实践是检验真理的唯一标准": {"options": [], "answer": "正确"},
    },
}


# --- Service Layer: Question Bank Management ---
class QuestionCatalog:
    """Loads question banks and answers catalog lookups.

    One bank file per subject. JSON banks keep the order of their keys,
    which becomes the sequence-mode order of each type.
    """

    def __init__(self, directory: str):
        self.directory = directory
        self.banks: Dict[str, QuestionSet] = {}
        self.load_all()

    def load_all(self):
        self.banks = {}
        if not os.path.exists(self.directory):
            os.makedirs(self.directory)
            logger.warning(f"Created directory {self.directory}. Please add bank files.")

        for file_path in sorted(glob.glob(os.path.join(self.directory, "*.json"))):
            subject = os.path.splitext(os.path.basename(file_path))[0]
            try:
                with open(file_path, encoding="utf-8") as f:
                    self.banks[subject] = self._parse_bank(json.load(f))
                logger.info(f"Loaded question bank: {subject}")
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.error(f"Failed to load {file_path}: {e}")

        for file_path in sorted(glob.glob(os.path.join(self.directory, "*.csv"))):
            subject = os.path.splitext(os.path.basename(file_path))[0]
            try:
                df = pd.read_csv(file_path, encoding="utf-8", dtype=str).fillna("")
                if not CSV_COLUMNS.issubset(df.columns):
                    logger.error(f"Skipping {subject}: Missing columns.")
                    continue
                self.banks[subject] = self._parse_frame(df)
                logger.info(f"Loaded {len(df)} questions from {subject}")
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load {file_path}: {e}")

        if not self.banks:
            logger.warning("No bank files found. Loading demo bank.")
            self.banks["demo"] = self._parse_bank(DEMO_BANK)

    @staticmethod
    def _parse_bank(raw: Dict[str, Dict[str, Dict[str, Any]]]) -> QuestionSet:
        if not isinstance(raw, dict):
            raise ValueError("bank must map types to questions")
        bank: QuestionSet = {}
        for type_name, questions in raw.items():
            if not isinstance(questions, dict) or not all(
                isinstance(data, dict) for data in questions.values()
            ):
                raise ValueError(f"{type_name} must map question text to its data")
            qtype = question_type_for(type_name)
            bank[type_name] = {
                text: Question(
                    text=text,
                    options=list(data.get("options") or []),
                    answer=str(data["answer"]),
                    type=qtype,
                )
                for text, data in questions.items()
            }
        return bank

    @staticmethod
    def _parse_frame(df: pd.DataFrame) -> QuestionSet:
        bank: QuestionSet = {}
        for row in df.to_dict("records"):
            type_name = row["type"]
            options = [o.strip() for o in row["options"].split("|") if o.strip()]
            bank.setdefault(type_name, {})[row["text"]] = Question(
                text=row["text"],
                options=options,
                answer=row["answer"],
                type=question_type_for(type_name),
            )
        return bank

    def get_subjects(self) -> List[str]:
        return list(self.banks)

    def get_types(self, subject: str) -> List[str]:
        return list(self.banks.get(subject, {}))

    def get_questions(self, subject: str) -> QuestionSet:
        return self.banks.get(subject, {})

    def get_entry(self, subject: str, type_name: str) -> List[Question]:
        """Questions of one (subject, type) in bank order; empty on a miss."""
        return list(self.banks.get(subject, {}).get(type_name, {}).values())

    def get_topics(self) -> List[Dict[str, Any]]:
        topics = []
        for subject, bank in self.banks.items():
            count = sum(len(questions) for questions in bank.values())
            topics.append({"id": subject, "name": subject, "types": list(bank), "count": count})
        return topics
