"""Tests for format detection and file name sanitizing."""

import pytest

from kindlesend.pipeline import needs_conversion, sanitize_file_name, file_extension, InvalidFileName


@pytest.mark.parametrize("ext", ["epub", "pdf", "docx", "txt", "html"])
def test_supported_formats_are_sent_as_is(ext):
    assert needs_conversion(ext) is False


@pytest.mark.parametrize("ext", ["fb2", "mobi", "azw3", ""])
def test_other_formats_need_conversion(ext):
    assert needs_conversion(ext) is True


def test_file_extension_is_lower_cased():
    assert file_extension("Book.FB2") == "fb2"
    assert file_extension("archive.tar.gz") == "gz"


def test_file_extension_missing():
    assert file_extension("README") == ""
    assert file_extension(".bashrc") == ""


def test_sanitize_strips_directories():
    assert sanitize_file_name("../../etc/passwd") == "passwd"
    assert sanitize_file_name("C:\\Users\\me\\book.epub") == "book.epub"


def test_sanitize_ignores_trailing_separators():
    assert sanitize_file_name("books/novel.fb2/") == "novel.fb2"
    assert sanitize_file_name("dir/") == "dir"
    assert sanitize_file_name("C:\\books\\novel.fb2\\") == "novel.fb2"


def test_sanitize_limits_length_in_bytes():
    # 2 bytes per Cyrillic letter in UTF-8
    assert sanitize_file_name("ж" * 125 + ".txt") == "ж" * 125 + ".txt"
    with pytest.raises(InvalidFileName, match="bytes"):
        sanitize_file_name("ж" * 200 + ".txt")


def test_sanitize_removes_control_and_reserved_characters():
    assert sanitize_file_name("my\x00bo<o>k?.pdf") == "mybook.pdf"
    assert sanitize_file_name("tab\there\x7f.txt") == "tabhere.txt"


def test_sanitize_keeps_unicode_and_spaces():
    assert sanitize_file_name("Война и мир.fb2") == "Война и мир.fb2"


@pytest.mark.parametrize("name", ["", "a" * 256, "..", "/", "dir///../", "???", "a/b/.."])
def test_sanitize_rejects_unusable_names(name):
    with pytest.raises(InvalidFileName):
        sanitize_file_name(name)


def test_invalid_file_name_is_a_value_error():
    with pytest.raises(ValueError):
        sanitize_file_name("")
