import hashlib

import pytest

from docqa.storage import BlobStore, InMemoryBlobStore, LocalBlobStore


def test_in_memory_store_round_trip():
    store = InMemoryBlobStore()

    info = store.put("docs/a.pdf", b"payload", "application/pdf")

    assert store.get("docs/a.pdf") == b"payload"
    assert info.etag == hashlib.md5(b"payload").hexdigest()
    assert info.size == 7
    assert store.head("docs/a.pdf") == info
    assert store.head("docs/missing.pdf") is None
    assert store.content_type("docs/a.pdf") == "application/pdf"
    assert isinstance(store, BlobStore)


def test_in_memory_list_is_prefix_filtered_and_sorted():
    store = InMemoryBlobStore()
    for key in ("b/2.pdf", "a/1.pdf", "b/1.pdf"):
        store.put(key, key)

    assert [info.key for info in store.list("b/")] == ["b/1.pdf", "b/2.pdf"]
    assert [info.key for info in store.list()] == ["a/1.pdf", "b/1.pdf", "b/2.pdf"]


def test_local_store_round_trip(tmp_path):
    store = LocalBlobStore(tmp_path / "library")

    info = store.put("extracted/doc.txt", "text body")

    assert store.get("extracted/doc.txt") == b"text body"
    assert info.size == len(b"text body")
    assert store.head("extracted/doc.txt").etag == info.etag
    assert store.get("extracted/other.txt") is None
    assert store.head("extracted/other.txt") is None
    assert (tmp_path / "library" / "extracted" / "doc.txt").is_file()


def test_local_store_lists_by_prefix(tmp_path):
    store = LocalBlobStore(tmp_path)
    store.put("lectures/a.pdf", b"a")
    store.put("lectures/b.pdf", b"b")
    store.put("other/c.pdf", b"c")

    assert [info.key for info in store.list("lectures/")] == ["lectures/a.pdf", "lectures/b.pdf"]


def test_local_store_sanitises_key_segments(tmp_path):
    store = LocalBlobStore(tmp_path)

    store.put("a b/c?.txt", b"x")

    assert (tmp_path / "a_b" / "c_.txt").is_file()
    assert store.get("a b/c?.txt") == b"x"
    with pytest.raises(ValueError):
        store.put("../escape.txt", b"x")
    with pytest.raises(ValueError):
        store.get("")


def test_local_store_listed_keys_round_trip_through_get(tmp_path):
    (tmp_path / "lectures").mkdir()
    (tmp_path / "lectures" / "Week 1 Lecture (draft).pdf").write_bytes(b"%PDF week one")
    (tmp_path / "_intro.pdf").write_bytes(b"%PDF intro")
    store = LocalBlobStore(tmp_path)

    keys = [info.key for info in store.list()]

    assert keys == ["_intro.pdf", "lectures/Week 1 Lecture (draft).pdf"]
    assert store.get("lectures/Week 1 Lecture (draft).pdf") == b"%PDF week one"
    assert store.head("_intro.pdf").size == len(b"%PDF intro")
    store.put("lectures/Week 1 Lecture (draft).pdf", b"%PDF revised")
    assert store.get("lectures/Week 1 Lecture (draft).pdf") == b"%PDF revised"
    assert [info.key for info in store.list("lectures/")] == ["lectures/Week 1 Lecture (draft).pdf"]
    with pytest.raises(ValueError):
        store.get("lectures/../_intro.pdf")
