from docqa.ingest.language import LanguageDetector

from conftest import LECTURE_PAGES


def test_detects_english_lecture_text():
    text = "--- Page 1 ---\n" + "\n".join(LECTURE_PAGES)

    assert LanguageDetector().detect(text) == "en"


def test_short_or_marker_only_text_is_unknown():
    detector = LanguageDetector(min_chars=40)

    assert detector.detect("--- Page 1 ---\nToo short") is None
    assert detector.detect("") is None
