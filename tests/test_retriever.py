from docqa.config import RetrievalConfig
from docqa.ingest.models import DocumentChunk
from docqa.retriever import (
    QuestionIntent,
    derive_table_headers,
    detect_intent,
    has_dense_acronyms,
    is_header_chunk,
    is_table_like_chunk,
    rank_chunks,
    score_chunks,
    select_chunks,
    tokenize,
)


def _chunks(*texts: str) -> list[DocumentChunk]:
    chunks = []
    offset = 0
    for index, text in enumerate(texts):
        chunks.append(DocumentChunk(index=index, text=text, char_start=offset, char_end=offset + len(text)))
        offset += len(text)
    return chunks


def test_tokenize_drops_short_words_and_stopwords():
    assert tokenize("What is the Mitral valve of it?") == {"mitral", "valve"}


def test_rank_chunks_orders_by_hits_then_index():
    chunks = _chunks(
        "mitral valve repair technique",
        "renal physiology basics",
        "valve anatomy",
    )

    ranked = rank_chunks("mitral valve stenosis", chunks, 3)

    assert [chunk.index for chunk in ranked] == [0, 2, 1]


def test_rank_chunks_breaks_ties_by_original_index():
    chunks = _chunks("alpha beta", "gamma delta", "alpha gamma")

    ranked = rank_chunks("alpha", chunks, 3)

    assert [chunk.index for chunk in ranked] == [0, 2, 1]


def test_rank_chunks_without_query_words_keeps_document_order():
    chunks = _chunks("one text", "two text", "three text")

    assert [chunk.index for chunk in rank_chunks("the and of", chunks, 2)] == [0, 1]


def test_length_bonus_only_applies_to_chunks_with_hits():
    long_text = " ".join(f"word{index}" for index in range(400))
    chunks = _chunks(long_text, "heart murmur")

    scores = {item.chunk.index: item.score for item in score_chunks("heart", chunks)}

    assert scores[0] == 0.0
    assert scores[1] > 2.0


def test_detect_intent_flags_broad_table_and_list_questions():
    intent = detect_intent("Make a table of all causes of chest pain")

    assert intent.is_broad
    assert intent.wants_table
    assert intent.list_intent
    assert intent.mode == "broad"
    assert detect_intent("What dose of aspirin is used?") == QuestionIntent()


def test_derive_table_headers_matches_question_wording():
    assert derive_table_headers("table of drug dosing") == ["Drug", "Indication", "Dose", "Notes"]
    assert derive_table_headers("table of disease features") == ["Disease", "Key features", "Notes"]
    assert derive_table_headers("table please") == ["Item", "Details"]


def test_structural_signal_detectors():
    assert is_header_chunk("DIFFERENTIAL DIAGNOSIS of syncope")
    assert not is_header_chunk("plain prose only")
    assert is_table_like_chunk("Drug | Dose | Notes")
    assert not is_table_like_chunk("no columns here")
    assert has_dense_acronyms("ECG MRI CT BNP were ordered")
    assert not has_dense_acronyms("ECG only")


def test_narrow_selection_returns_all_chunks_when_fewer_than_top_k():
    chunks = _chunks("first section text", "second section text")

    selection = select_chunks("unrelated words", chunks, config=RetrievalConfig(top_k=6))

    assert selection.mode == "narrow"
    assert sorted(selection.indices) == [0, 1]


def test_narrow_selection_respects_context_cap():
    chunks = _chunks("heart " * 50, "heart " * 50, "heart " * 50)

    selection = select_chunks("heart", chunks, config=RetrievalConfig(max_context_chars=650))

    assert len(selection.chunks) == 2
    assert selection.total_chars <= 650


def test_broad_selection_falls_back_to_linear_scan_until_floors_met():
    prose = ("patients were observed in clinic and recovered well after rest " * 12)[:700]
    chunks = _chunks(*[prose] * 20)
    config = RetrievalConfig(broad_top_k=2)

    selection = select_chunks("compare everything", chunks, QuestionIntent(is_broad=True), config)

    assert selection.mode == "broad"
    assert len(selection.chunks) == 18
    assert selection.total_chars >= config.broad_min_chars
    assert len(selection.chunks) >= config.broad_min_chunks
    assert selection.indices == sorted(selection.indices)


def test_broad_selection_is_in_document_order():
    chunks = _chunks(
        "renal notes",
        "DIFFERENTIAL DIAGNOSIS list",
        "heart heart heart causes",
        "Drug | Dose | Notes",
    )

    selection = select_chunks("list all heart causes", chunks)

    assert selection.mode == "broad"
    assert selection.indices == sorted(selection.indices)
    assert {1, 2, 3} <= set(selection.indices)


def test_select_chunks_on_empty_document():
    selection = select_chunks("anything", [])

    assert selection.chunks == []
    assert selection.total_chars == 0


def test_broad_triggers_match_inside_longer_words():
    assert detect_intent("What is the reapproach after a failed ablation?").is_broad
    assert detect_intent("Give the etiologies of syncope").is_broad
    assert not detect_intent("Which tablets are preferred?").is_broad
