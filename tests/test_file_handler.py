"""Tests for file_handler: encoding-aware I/O and FilesystemStorage."""

from datetime import timezone

import pytest

from docsync.config_schema import PolicyConfig
from docsync.file_handler import (
    FilesystemStorage,
    read_file_with_encoding,
    write_file,
)

# =============================================================================
# read_file_with_encoding / write_file
# =============================================================================


class TestReadWrite:
    def test_utf8_roundtrip(self, tmp_path):
        path = tmp_path / "note.md"
        written = write_file(path, "café notes\n")

        content, encoding = read_file_with_encoding(path)
        assert content == "café notes\n"
        assert encoding == "utf-8"
        assert written == len("café notes\n".encode("utf-8"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.md"
        path.write_bytes(b"")
        assert read_file_with_encoding(path) == ("", "utf-8")

    def test_ascii_reported_as_utf8(self, tmp_path):
        path = tmp_path / "plain.md"
        path.write_bytes(b"just ascii text\n")
        assert read_file_with_encoding(path)[1] == "utf-8"

    def test_write_creates_parents(self, tmp_path):
        path = tmp_path / "a" / "b" / "c.md"
        write_file(path, "deep")
        assert path.read_text() == "deep"


# =============================================================================
# FilesystemStorage
# =============================================================================


@pytest.fixture
def fs(tmp_path):
    return FilesystemStorage(tmp_path, exclude=["drafts/*"])


class TestFilesystemStorage:
    def test_write_and_read(self, fs, tmp_path):
        fs.write_document("projects/plan.md", "body\n")

        assert (tmp_path / "projects" / "plan.md").read_text() == "body\n"
        assert fs.read_document("projects/plan.md") == "body\n"
        assert fs.exists("projects/plan.md")

    def test_list_skips_hidden_excluded_and_other_extensions(self, fs, tmp_path):
        fs.write_document("b.md", "b")
        fs.write_document("a/c.md", "c")
        fs.write_document("drafts/wip.md", "x")
        fs.write_document(".trash/2024-05-01/old.md", "x")
        fs.write_document(".docsync/notes.md", "x")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        assert fs.list_documents() == ["a/c.md", "b.md"]

    def test_from_policy_hides_custom_archive_folder(self, tmp_path):
        fs = FilesystemStorage.from_policy(
            tmp_path,
            PolicyConfig(archive_folder="old/archive", exclude=["drafts/*"]),
        )
        fs.write_document("notes/a.md", "a")
        fs.write_document("old/archive/2024-05-01/a.md", "x")
        fs.write_document("old/kept.md", "k")
        fs.write_document("drafts/wip.md", "x")
        fs.write_document(".docsync/state.md", "x")

        assert fs.list_documents() == ["notes/a.md", "old/kept.md"]

    def test_list_missing_root(self, tmp_path):
        assert FilesystemStorage(tmp_path / "absent").list_documents() == []

    def test_move(self, fs):
        fs.write_document("a.md", "x")
        fs.move_document("a.md", "sub/b.md")

        assert not fs.exists("a.md")
        assert fs.read_document("sub/b.md") == "x"

    def test_move_refuses_existing_target(self, fs):
        fs.write_document("a.md", "x")
        fs.write_document("b.md", "y")

        with pytest.raises(FileExistsError):
            fs.move_document("a.md", "b.md")
        assert fs.read_document("b.md") == "y"

    def test_delete(self, fs):
        fs.write_document("a.md", "x")
        fs.delete_document("a.md")
        assert not fs.exists("a.md")

    def test_modified_at_is_utc(self, fs):
        fs.write_document("a.md", "x")
        assert fs.modified_at("a.md").tzinfo == timezone.utc

    @pytest.mark.parametrize("bad", ["../escape.md", "/etc/passwd", "a/../../b.md"])
    def test_paths_cannot_escape_root(self, fs, bad):
        with pytest.raises(ValueError, match="inside the root"):
            fs.read_document(bad)
