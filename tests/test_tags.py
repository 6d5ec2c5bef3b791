"""Tests for tag extraction and the tag repository."""
import pytest

from flux_notes.exceptions import ConstraintViolationError
from flux_notes.storage import tag_repository as tag_module
from flux_notes.storage.tag_repository import extract_tags


class TestExtractTags:
    """Tests for extract_tags."""

    def test_mentions_and_hashtags_in_first_seen_order(self):
        assert extract_tags("Meet @alice re #Project and #project") == ["alice", "project"]

    def test_lowercases_and_deduplicates(self):
        assert extract_tags("#Idea #IDEA @Idea") == ["idea"]

    def test_word_characters_only(self):
        assert extract_tags("#one-two #three_four #five!") == ["one", "three_four", "five"]

    @pytest.mark.parametrize("body", ["", None, "no tags here", "# heading", "email@"])
    def test_no_tags(self, body):
        assert extract_tags(body) == []


class TestTagRepository:
    """Tests for TagRepository."""

    def test_sync_replaces_associations(self, note_repository, tag_repository):
        note = note_repository.create("Note")
        tag_repository.sync_note_tags(note.id, "#alpha #beta")
        assert tag_repository.get_tags_for_note(note.id) == ["alpha", "beta"]

        tag_repository.sync_note_tags(note.id, "#beta #gamma")
        assert tag_repository.get_tags_for_note(note.id) == ["beta", "gamma"]

    def test_sync_returns_extracted_names(self, note_repository, tag_repository):
        note = note_repository.create("Note")
        assert tag_repository.sync_note_tags(note.id, "@bob #Work") == ["bob", "work"]

    def test_existing_tags_are_reused(self, note_repository, tag_repository):
        first = note_repository.create("First")
        second = note_repository.create("Second")
        tag_repository.sync_note_tags(first.id, "#shared")
        tag_repository.sync_note_tags(second.id, "#Shared")

        tags = tag_repository.get_all_tags()
        assert [(t.name, t.count) for t in tags] == [("shared", 2)]

    def test_all_tags_ordered_by_count_then_name(self, note_repository, tag_repository):
        a = note_repository.create("A")
        b = note_repository.create("B")
        tag_repository.sync_note_tags(a.id, "#zeta #beta #alpha")
        tag_repository.sync_note_tags(b.id, "#zeta")

        tags = tag_repository.get_all_tags()

        assert [(t.name, t.count) for t in tags] == [
            ("zeta", 2), ("alpha", 1), ("beta", 1),
        ]

    def test_orphaned_tags_are_kept(self, note_repository, tag_repository):
        note = note_repository.create("Note")
        tag_repository.sync_note_tags(note.id, "#temporary")
        tag_repository.sync_note_tags(note.id, "no more tags")

        tags = tag_repository.get_all_tags()
        assert [(t.name, t.count) for t in tags] == [("temporary", 0)]

    def test_notes_by_tag_case_insensitive_newest_first(self, note_repository, tag_repository):
        older = note_repository.create("Older")
        newer = note_repository.create("Newer")
        note_repository.update(newer.id, title="Newer still")
        tag_repository.sync_note_tags(older.id, "#topic")
        tag_repository.sync_note_tags(newer.id, "#topic")

        notes = tag_repository.get_notes_by_tag("TOPIC")

        assert [n.id for n in notes] == [newer.id, older.id]

    def test_deleting_note_removes_associations(self, note_repository, tag_repository):
        note = note_repository.create("Note")
        tag_repository.sync_note_tags(note.id, "#gone")
        note_repository.delete(note.id)

        assert tag_repository.get_notes_by_tag("gone") == []
        assert [(t.name, t.count) for t in tag_repository.get_all_tags()] == [("gone", 0)]

    def test_sync_for_missing_note_fails(self, tag_repository):
        with pytest.raises(ConstraintViolationError):
            tag_repository.sync_note_tags("no-such-note", "#tag")

    def test_failed_sync_keeps_previous_tags(self, note_repository, tag_repository, monkeypatch):
        """A failure halfway through leaves the prior associations in place."""
        note = note_repository.create("Note")
        tag_repository.sync_note_tags(note.id, "#alpha")

        # A NULL tag cannot be associated, and "beta" was already written by then
        monkeypatch.setattr(tag_module, "extract_tags", lambda body: ["beta", None])
        with pytest.raises(ConstraintViolationError):
            tag_repository.sync_note_tags(note.id, "#beta #broken")

        assert tag_repository.get_tags_for_note(note.id) == ["alpha"]
        assert [t.name for t in tag_repository.get_all_tags()] == ["alpha"]
