import json

from docqa.cache.doc_id import LIBRARY_INDEX_KEY, build_index_key
from docqa.cache.index import IndexRecord, LibraryIndex, score_records
from docqa.cache.ttl import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _record(doc_id: str, title: str, **overrides) -> IndexRecord:
    return IndexRecord(doc_id=doc_id, bucket="lectures", key=f"{title}.pdf", title=title, **overrides)


def test_upsert_persists_snapshot_and_per_doc_entry(library_index, library_store):
    stored = library_index.upsert(_record("doc1", "cardio intro", preview="Heart   basics", status="ready"))

    assert stored.normalized_tokens == ["cardio", "intro"]
    assert stored.preview == "Heart basics"
    assert stored.manifest_key == "manifests/doc1.json"
    assert stored.extracted_key == "extracted/doc1.txt"
    per_doc = json.loads(library_store.get(build_index_key("doc1")))
    assert per_doc["docId"] == "doc1"
    assert per_doc["status"] == "ready"
    assert library_store.get(LIBRARY_INDEX_KEY).decode().count("\n") == 0


def test_upsert_merges_with_prior_record(library_index):
    library_index.upsert(_record("doc1", "cardio intro", preview="Prior preview", language="en"))
    merged = library_index.upsert(_record("doc1", "cardio intro", status="ready"))

    assert merged.preview == "Prior preview"
    assert merged.language == "en"
    assert merged.status == "ready"
    assert len(library_index.read_all()) == 1


def test_read_all_skips_malformed_lines(library_store):
    valid = _record("doc1", "renal basics").to_json()
    library_store.put(LIBRARY_INDEX_KEY, "\n".join([valid, "{broken", json.dumps({"docId": "x"})]))

    records = LibraryIndex(library_store).read_all()

    assert [record.doc_id for record in records] == ["doc1"]
    assert records[0].normalized_tokens == ["renal", "basics"]


def test_snapshot_reads_are_cached_until_ttl_or_write(library_store):
    clock = FakeClock()
    index = LibraryIndex(library_store, TTLCache(ttl_seconds=30.0, clock=clock))
    index.upsert(_record("doc1", "cardio intro"))
    assert len(index.read_all()) == 1

    library_store.put(LIBRARY_INDEX_KEY, "\n".join([_record("doc1", "a").to_json(), _record("doc2", "b").to_json()]))
    assert len(index.read_all()) == 1

    clock.now += 31
    assert len(index.read_all()) == 2

    index.upsert(_record("doc3", "c"))
    assert [record.doc_id for record in index.read_all()] == ["doc1", "doc2", "doc3"]


def test_score_records_prefers_exact_then_prefix_tokens():
    records = [
        _record("a", "cardiology intro"),
        _record("b", "renal physiology"),
        _record("c", "cardio pulmonary"),
    ]

    ranked = score_records("cardio", [record.model_copy(update={"normalized_tokens": record.title.split()}) for record in records])

    assert [record.doc_id for record in ranked] == ["c", "a", "b"]
    assert len(score_records("cardio", records, limit=1)) == 1


def test_search_returns_all_records_for_blank_query(library_index):
    library_index.upsert(_record("doc1", "cardio intro"))
    library_index.upsert(_record("doc2", "renal basics"))

    assert [record.doc_id for record in library_index.search("  ")] == ["doc1", "doc2"]
    assert library_index.search("renal")[0].doc_id == "doc2"
    assert library_index.get("doc2").title == "renal basics"
    assert library_index.get("nope") is None


def test_ttl_cache_expiry_invalidation_and_stats():
    clock = FakeClock()
    cache: TTLCache[int] = TTLCache(ttl_seconds=5.0, clock=clock)

    assert cache.get("k") is None
    cache.set("k", 1)
    assert cache.get("k") == 1
    clock.now += 5
    assert cache.get("k") is None

    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.invalidate()
    assert cache.get("b") is None
    assert cache.stats() == {"hits": 2, "misses": 4, "size": 0}
