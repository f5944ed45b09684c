"""Tests for prdsmith.context."""

from pathlib import Path

from prdsmith.context import (
    format_context_errors,
    is_supported_file,
    load_context_file,
    load_context_files,
)


class TestSupportedFiles:
    def test_text_extensions(self):
        assert is_supported_file(Path("notes.md"))
        assert is_supported_file(Path("schema.SQL"))
        assert is_supported_file(Path("README"))
        assert is_supported_file(Path(".gitignore"))

    def test_binary_extensions(self):
        assert not is_supported_file(Path("logo.png"))
        assert not is_supported_file(Path("app.exe"))


class TestLoadContextFile:
    def test_relative_to_base_dir(self, tmp_path):
        (tmp_path / "notes.md").write_text("# Notes\n")
        loaded = load_context_file("notes.md", base_dir=tmp_path)

        assert loaded.success
        assert loaded.content == "# Notes\n"
        assert loaded.absolute_path == tmp_path / "notes.md"

    def test_missing_file(self, tmp_path):
        loaded = load_context_file("nope.md", base_dir=tmp_path)
        assert not loaded.success
        assert loaded.error == "File not found: nope.md"

    def test_directory_is_not_a_file(self, tmp_path):
        (tmp_path / "docs").mkdir()
        assert load_context_file("docs", base_dir=tmp_path).error == "File not found: docs"

    def test_unsupported_type(self, tmp_path):
        (tmp_path / "logo.png").write_bytes(b"\x89PNG")
        loaded = load_context_file("logo.png", base_dir=tmp_path)
        assert loaded.error.startswith("Unsupported file type: logo.png")

    def test_too_large(self, tmp_path):
        (tmp_path / "big.txt").write_text("x" * 2048)
        loaded = load_context_file("big.txt", base_dir=tmp_path, max_file_size=1024)
        assert loaded.error.startswith("File too large: big.txt")
        assert "limit" in loaded.error

    def test_not_utf8(self, tmp_path):
        (tmp_path / "latin.txt").write_bytes(b"caf\xe9")
        loaded = load_context_file("latin.txt", base_dir=tmp_path)
        assert loaded.error.startswith("Failed to read file: latin.txt")


class TestLoadContextFiles:
    def test_combined_content(self, tmp_path):
        (tmp_path / "a.md").write_text("alpha")
        (tmp_path / "b.py").write_text("print('beta')")
        result = load_context_files(["a.md", "b.py"], base_dir=tmp_path)

        assert result.all_successful
        assert result.combined_content == (
            "## Reference Documents\n\n"
            "### File: a.md\n```md\nalpha\n```\n\n"
            "### File: b.py\n```py\nprint('beta')\n```"
        )

    def test_failures_are_collected(self, tmp_path):
        (tmp_path / "a.md").write_text("alpha")
        result = load_context_files(["missing.md", "a.md"], base_dir=tmp_path)

        assert not result.all_successful
        assert [f.path for f in result.failed] == ["missing.md"]
        assert [f.path for f in result.successful] == ["a.md"]
        assert "alpha" in result.combined_content

    def test_stop_on_first_error(self, tmp_path):
        (tmp_path / "a.md").write_text("alpha")
        result = load_context_files(["missing.md", "a.md"], base_dir=tmp_path, continue_on_error=False)

        assert len(result.files) == 1
        assert result.combined_content == ""

    def test_no_paths(self):
        assert load_context_files([]).combined_content == ""


class TestFormatContextErrors:
    def test_lists_each_error(self, tmp_path):
        result = load_context_files(["x.md", "y.md"], base_dir=tmp_path)
        message = format_context_errors(result.failed)

        assert message.startswith("Failed to load 2 context files:")
        assert "  - File not found: x.md" in message

    def test_empty(self):
        assert format_context_errors([]) == ""
