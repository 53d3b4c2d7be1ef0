import pandas as pd

from shuati.catalog import QuestionCatalog
from shuati.models import QuestionType


class TestJsonBanks:
    def test_subjects_and_types_in_file_order(self, catalog):
        assert catalog.get_subjects() == ["马原"]
        assert catalog.get_types("马原") == ["单选题", "多选题", "判断题"]

    def test_entry_keeps_bank_order(self, catalog):
        entry = catalog.get_entry("马原", "单选题")
        assert [q.text for q in entry] == ["Q1", "Q2", "Q3", "Q4"]

    def test_types_derived_from_names(self, catalog):
        assert catalog.get_entry("马原", "多选题")[0].type == QuestionType.MULTIPLE
        assert catalog.get_entry("马原", "判断题")[0].type == QuestionType.TRUEFALSE
        assert catalog.get_entry("马原", "单选题")[0].type == QuestionType.SINGLE

    def test_catalog_miss_is_empty(self, catalog):
        assert catalog.get_entry("马原", "填空题") == []
        assert catalog.get_entry("毛概", "单选题") == []
        assert catalog.get_questions("毛概") == {}
        assert catalog.get_types("毛概") == []

    def test_broken_file_is_skipped(self, bank_dir):
        (bank_dir / "broken.json").write_text("{oops", encoding="utf-8")
        catalog = QuestionCatalog(str(bank_dir))
        assert catalog.get_subjects() == ["马原"]

    def test_wrongly_shaped_file_is_skipped(self, bank_dir):
        (bank_dir / "bad.json").write_text('{"单选题": ["Q1"]}', encoding="utf-8")
        (bank_dir / "flat.json").write_text('{"单选题": {"Q1": "A"}}', encoding="utf-8")
        catalog = QuestionCatalog(str(bank_dir))
        assert catalog.get_subjects() == ["马原"]

    def test_topics(self, catalog):
        topics = catalog.get_topics()
        assert topics[0]["id"] == "马原"
        assert topics[0]["count"] == 8


class TestCsvBanks:
    def test_csv_loaded_with_pandas(self, tmp_path):
        df = pd.DataFrame(
            {
                "type": ["single", "multiple", "truefalse"],
                "text": ["Q1", "M1", "T1"],
                "options": ["A. x|B. y", "A. x|B. y|C. z", ""],
                "answer": ["A", "AC", "正确"],
            }
        )
        df.to_csv(tmp_path / "history.csv", index=False, encoding="utf-8")
        catalog = QuestionCatalog(str(tmp_path))
        assert catalog.get_types("history") == ["single", "multiple", "truefalse"]
        assert catalog.get_entry("history", "single")[0].options == ["A. x", "B. y"]
        assert catalog.get_entry("history", "truefalse")[0].options == []

    def test_csv_missing_columns_skipped(self, tmp_path):
        pd.DataFrame({"word": ["Hund"]}).to_csv(tmp_path / "words.csv", index=False)
        catalog = QuestionCatalog(str(tmp_path))
        assert "words" not in catalog.get_subjects()


def test_empty_directory_loads_demo(tmp_path):
    catalog = QuestionCatalog(str(tmp_path / "missing"))
    assert catalog.get_subjects() == ["demo"]
    assert (tmp_path / "missing").exists()
