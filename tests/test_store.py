"""Tests for the in-memory and ChromaDB backed library stores."""

from __future__ import annotations

import threading

import pytest
from chromadb.api.models.Collection import Collection

from ai_books.errors import StorageError
from ai_books.library import build_library
from ai_books.store import ChromaLibraryStore, LibraryStore
from conftest import VALID_TEXT, make_text, new_chroma_store


class TestLibraryStore:
    def test_initial_count_is_zero(self, library_store: LibraryStore):
        assert library_store.count() == 0
        assert library_store.list() == []

    def test_save_and_get(self, library_store: LibraryStore):
        library = build_library("docs", VALID_TEXT)
        library_store.save(library)
        assert library_store.get("docs") is library
        assert library_store.exists("docs")

    def test_get_missing_returns_none(self, library_store: LibraryStore):
        assert library_store.get("missing") is None
        assert not library_store.exists("missing")

    def test_names_are_case_sensitive(self, library_store: LibraryStore):
        library_store.save(build_library("docs", VALID_TEXT))
        assert library_store.get("Docs") is None

    def test_save_replaces_in_place(self, library_store: LibraryStore):
        library_store.save(build_library("a", VALID_TEXT))
        library_store.save(build_library("b", VALID_TEXT))
        replacement = build_library("a", make_text(40, word="other"))
        library_store.save(replacement)
        assert [lib.name for lib in library_store.list()] == ["a", "b"]
        assert library_store.get("a") is replacement

    def test_delete_reports_removal(self, library_store: LibraryStore):
        library_store.save(build_library("docs", VALID_TEXT))
        assert library_store.delete("docs") is True
        assert library_store.delete("docs") is False
        assert library_store.count() == 0

    def test_clear(self, library_store: LibraryStore):
        library_store.save(build_library("a", VALID_TEXT))
        library_store.save(build_library("b", VALID_TEXT))
        library_store.clear()
        assert library_store.count() == 0

    def test_concurrent_saves(self, library_store: LibraryStore):
        libraries = [build_library(f"lib-{i}", VALID_TEXT) for i in range(20)]
        threads = [threading.Thread(target=library_store.save, args=(lib,)) for lib in libraries]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert library_store.count() == 20


class TestChromaLibraryStore:
    def test_new_namespace_is_empty(self, chroma_store: ChromaLibraryStore):
        assert chroma_store.count() == 0

    def test_libraries_survive_reopening(self, chroma_store: ChromaLibraryStore):
        text = " ".join(f"word{i}" for i in range(600))
        library = build_library("persisted", text, n_max=9)
        chroma_store.save(library)

        reopened = new_chroma_store(chroma_store.namespace)
        loaded = reopened.get("persisted")
        assert loaded is not None
        assert loaded.chunks == library.chunks
        assert loaded.compression_ratio == pytest.approx(library.compression_ratio)
        assert loaded.created_at == library.created_at
        assert loaded.n_max == 9

    def test_replacing_library_overwrites_collection(self, chroma_store: ChromaLibraryStore):
        chroma_store.save(build_library("docs", make_text(600)))
        chroma_store.save(build_library("docs", VALID_TEXT))

        reopened = new_chroma_store(chroma_store.namespace)
        assert reopened.count() == 1
        assert len(reopened.get("docs").chunks) == 1

    def test_delete_removes_persisted_library(self, chroma_store: ChromaLibraryStore):
        chroma_store.save(build_library("docs", VALID_TEXT))
        assert chroma_store.delete("docs") is True
        assert chroma_store.delete("docs") is False
        assert new_chroma_store(chroma_store.namespace).count() == 0

    def test_namespaces_are_isolated(self, chroma_store: ChromaLibraryStore):
        chroma_store.save(build_library("docs", VALID_TEXT))
        assert new_chroma_store().get("docs") is None

    def test_long_names_are_storable(self, chroma_store: ChromaLibraryStore):
        name = "x" * 100
        chroma_store.save(build_library(name, VALID_TEXT))
        assert new_chroma_store(chroma_store.namespace).exists(name)

    def test_clear_drops_namespace(self, chroma_store: ChromaLibraryStore):
        chroma_store.save(build_library("a", VALID_TEXT))
        chroma_store.save(build_library("b", VALID_TEXT))
        chroma_store.clear()
        assert chroma_store.count() == 0
        assert new_chroma_store(chroma_store.namespace).count() == 0

    def test_large_libraries_are_written_in_batches(self):
        store = new_chroma_store(max_batch_size=2)
        library = build_library("batched", make_text(250 * 5))
        store.save(library)

        loaded = new_chroma_store(store.namespace).get("batched")
        assert len(loaded.chunks) == 5
        assert loaded.chunks == library.chunks

    def test_failed_write_keeps_previous_library(self, chroma_store: ChromaLibraryStore, monkeypatch):
        original = build_library("docs", VALID_TEXT)
        chroma_store.save(original)

        def _reject(self, *args, **kwargs):
            raise ValueError("Batch size of 5462 is greater than max batch size of 5461")

        monkeypatch.setattr(Collection, "add", _reject)
        with pytest.raises(StorageError):
            chroma_store.save(build_library("docs", make_text(1000)))
        monkeypatch.undo()

        assert chroma_store.get("docs") is original
        reopened = new_chroma_store(chroma_store.namespace)
        assert reopened.count() == 1
        assert reopened.get("docs").chunks == original.chunks

    def test_replacing_library_leaves_single_collection(self, chroma_store: ChromaLibraryStore):
        chroma_store.save(build_library("docs", VALID_TEXT))
        chroma_store.save(build_library("docs", make_text(600)))
        assert len(chroma_store._namespace_collections()) == 1

    def test_unfinished_write_is_ignored_on_reopen(self, monkeypatch):
        store = new_chroma_store(max_batch_size=2)
        original = build_library("docs", VALID_TEXT)
        store.save(original)

        real_add = Collection.add
        calls = []

        def _fail_second_batch(self, *args, **kwargs):
            calls.append(1)
            if len(calls) == 2:
                raise ValueError("connection lost")
            return real_add(self, *args, **kwargs)

        # Leave the half-written collection behind, as a killed process would.
        monkeypatch.setattr(Collection, "add", _fail_second_batch)
        monkeypatch.setattr(ChromaLibraryStore, "_discard_collection", lambda self, name: None)
        with pytest.raises(StorageError):
            store.save(build_library("docs", make_text(250 * 5)))
        monkeypatch.undo()

        reopened = new_chroma_store(store.namespace)
        assert reopened.get("docs").chunks == original.chunks
        assert len(reopened._namespace_collections()) == 1
