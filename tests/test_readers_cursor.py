"""Tests for the Cursor reader."""

import json
from datetime import datetime, timezone

import pytest

from vibesync.errors import SourceNotFoundError
from vibesync.readers.cursor import (
    UNKNOWN_PROJECT,
    CursorReader,
    LegacyConversation,
    ModernConversation,
    classify_conversation,
    extract_text,
    folder_uri_to_name,
    generate_cursor_session_id,
    role_for_type,
)

CREATED_MS = 1_709_283_600_000  # 2024-03-01T09:00:00Z
UPDATED_MS = CREATED_MS + 15 * 60 * 1000


def legacy_composer(composer_id="legacy-1"):
    return {
        "composerId": composer_id,
        "createdAt": CREATED_MS,
        "lastUpdatedAt": UPDATED_MS,
        "conversation": [
            {"type": 1, "text": "Refactor the parser", "timestamp": CREATED_MS},
            {"type": 2, "text": "Done, split into two functions.", "timestamp": CREATED_MS + 5 * 60 * 1000},
        ],
    }


def modern_composer(composer_id="modern-1", bubble_ids=("b1", "b2", "b3")):
    return {
        "_v": 3,
        "composerId": composer_id,
        "createdAt": CREATED_MS,
        "lastUpdatedAt": UPDATED_MS,
        "fullConversationHeadersOnly": [
            {"bubbleId": bubble_id, "type": 1 if index % 2 == 0 else 2}
            for index, bubble_id in enumerate(bubble_ids)
        ],
    }


def reader_for(db_path, storage):
    return CursorReader(path=db_path, workspace_path=storage)


class TestClassification:
    def test_legacy_shape(self):
        conversation = classify_conversation(legacy_composer())
        assert isinstance(conversation, LegacyConversation)
        assert len(conversation.messages) == 2

    def test_modern_shape(self):
        conversation = classify_conversation(modern_composer())
        assert isinstance(conversation, ModernConversation)
        assert conversation.version == 3
        assert [h["bubbleId"] for h in conversation.headers] == ["b1", "b2", "b3"]

    def test_legacy_with_version_is_not_legacy(self):
        data = legacy_composer()
        data["_v"] = 2
        assert classify_conversation(data) is None

    def test_boolean_version_rejected(self):
        data = modern_composer()
        data["_v"] = True
        assert classify_conversation(data) is None

    def test_unknown_shapes(self):
        assert classify_conversation({"composerId": "x"}) is None
        assert classify_conversation([1, 2]) is None
        assert classify_conversation({"composerId": 5, "conversation": []}) is None


class TestHelpers:
    def test_roles(self):
        assert role_for_type(1) == "user"
        assert role_for_type(2) == "assistant"
        assert role_for_type(None) == "system"

    def test_extract_text_prefers_text(self):
        assert extract_text({"text": "hello", "richText": "ignored"}) == "hello"

    def test_extract_text_from_lexical_rich_text(self):
        rich = {
            "root": {
                "children": [
                    {"type": "paragraph", "children": [{"type": "text", "text": "first"}]},
                    {"type": "paragraph", "children": [{"type": "text", "text": "second"}]},
                ]
            }
        }
        assert extract_text({"text": "  ", "richText": json.dumps(rich)}) == "first second"

    def test_extract_text_plain_rich_text(self):
        assert extract_text({"richText": "plain words"}) == "plain words"

    def test_folder_uri_to_name(self):
        assert folder_uri_to_name("file:///home/dev/my-app") == "my-app"
        assert folder_uri_to_name("file:///c%3A/projects/api") == "api"

    def test_session_id_is_stable(self):
        ts = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        first = generate_cursor_session_id("abc", ts)
        assert first == generate_cursor_session_id("abc", ts)
        assert first.startswith("cursor-")
        assert len(first) == len("cursor-") + 16
        assert first != generate_cursor_session_id("abd", ts)


class TestCursorReader:
    def test_missing_database(self, tmp_path):
        reader = CursorReader(path=tmp_path / "missing.vscdb", workspace_path=tmp_path / "ws")
        assert not reader.is_available()
        with pytest.raises(SourceNotFoundError) as exc_info:
            reader.read_sessions()
        assert exc_info.value.code == "CURSOR_NOT_FOUND"

    def test_legacy_conversation(self, cursor_db_factory):
        db_path, storage = cursor_db_factory(
            {"composerData:legacy-1": legacy_composer()},
            workspaces=[("file:///home/dev/parser", ["legacy-1"])],
        )

        sessions = reader_for(db_path, storage).read_sessions()

        assert len(sessions) == 1
        session = sessions[0]
        assert session.tool.value == "cursor"
        assert session.project_path == "parser"
        assert session.source_session_id == "legacy-1"
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.duration == 300
        assert session.timestamp == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert session.file_edit_count == 0
        assert session.languages == []

    def test_modern_conversation_joins_bubbles(self, cursor_db_factory):
        db_path, storage = cursor_db_factory(
            {
                "composerData:modern-1": modern_composer(),
                "bubbleId:modern-1:b1": {"text": "Add caching"},
                "bubbleId:modern-1:b2": {"text": "Added an LRU cache."},
                "bubbleId:modern-1:b3": {"text": "Thanks"},
            },
            workspaces=[("file:///home/dev/cache", ["modern-1"])],
        )

        sessions = reader_for(db_path, storage).read_sessions()

        assert len(sessions) == 1
        messages = sessions[0].messages
        assert [m.content for m in messages] == ["Add caching", "Added an LRU cache.", "Thanks"]
        assert [m.role for m in messages] == ["user", "assistant", "user"]
        # Span runs from createdAt to lastUpdatedAt
        assert sessions[0].duration == 15 * 60

    def test_missing_bubble_drops_only_that_message(self, cursor_db_factory):
        db_path, storage = cursor_db_factory(
            {
                "composerData:modern-1": modern_composer(),
                "bubbleId:modern-1:b1": {"text": "Add caching"},
                "bubbleId:modern-1:b3": {"text": "Thanks"},
            }
        )

        sessions = reader_for(db_path, storage).read_sessions()

        assert [m.content for m in sessions[0].messages] == ["Add caching", "Thanks"]

    def test_unmapped_composer_uses_unknown_project(self, cursor_db_factory):
        db_path, storage = cursor_db_factory({"composerData:legacy-1": legacy_composer()})

        sessions = reader_for(db_path, storage).read_sessions()

        assert sessions[0].project_path == UNKNOWN_PROJECT

    def test_malformed_record_is_skipped(self, cursor_db_factory):
        db_path, storage = cursor_db_factory(
            {
                "composerData:broken": "{not json",
                "composerData:legacy-1": legacy_composer(),
            }
        )
        reader = reader_for(db_path, storage)

        sessions = reader.read_sessions()

        assert [s.source_session_id for s in sessions] == ["legacy-1"]
        assert reader.skipped_records == 1

    def test_empty_conversation_yields_no_session(self, cursor_db_factory):
        empty = legacy_composer("empty")
        empty["conversation"] = []
        db_path, storage = cursor_db_factory({"composerData:empty": empty})

        assert reader_for(db_path, storage).read_sessions() == []

    def test_filters_and_ordering(self, cursor_db_factory):
        later = legacy_composer("later")
        later["createdAt"] = CREATED_MS + 86_400_000
        for message in later["conversation"]:
            message["timestamp"] += 86_400_000
        db_path, storage = cursor_db_factory(
            {"composerData:later": later, "composerData:legacy-1": legacy_composer()},
            workspaces=[("file:///home/dev/parser", ["legacy-1"]), ("file:///home/dev/other", ["later"])],
        )
        reader = reader_for(db_path, storage)

        all_sessions = reader.read_sessions()
        assert [s.source_session_id for s in all_sessions] == ["legacy-1", "later"]

        since = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert [s.source_session_id for s in reader.read_sessions(since=since)] == ["later"]

        assert [s.source_session_id for s in reader.read_sessions(project_path="parser")] == ["legacy-1"]
        assert len(reader.read_sessions(limit=1)) == 1

    def test_read_selected_matches_composer_id(self, cursor_db_factory):
        db_path, storage = cursor_db_factory(
            {"composerData:a": legacy_composer("a"), "composerData:b": legacy_composer("b")}
        )
        reader = reader_for(db_path, storage)
        selected = [s.source_file for s in reader.read_sessions() if s.source_session_id == "b"]

        sessions = reader.read_selected(selected)

        assert [s.source_session_id for s in sessions] == ["b"]

    def test_resolve_project_path_uses_display_name(self):
        reader = CursorReader()
        assert reader.resolve_project_path("/home/dev/parser") == "parser"

    def test_in_directory_matches_workspace_name(self, cursor_db_factory):
        db_path, storage = cursor_db_factory(
            {"composerData:legacy-1": legacy_composer()},
            workspaces=[("file:///home/dev/my-app", ["legacy-1"])],
        )
        reader = reader_for(db_path, storage)
        session = reader.read_sessions()[0]

        assert reader.in_directory(session, "/home/dev/my-app")
        assert reader.in_directory(session, "/Users/Dev/My-App/")
        assert not reader.in_directory(session, "/home/dev/other")
        assert not reader.in_directory(session, "/home/dev/my-app-legacy")
