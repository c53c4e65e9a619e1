import pytest

from core.errors import ProtocolError
from services.classifier import (
    Role, classify, pick_volume_cover, sanitize_filename, sanitize_folder_name,
)


def test_page_image():
    result = classify("001.jpg", "Naruto")
    assert result.role is Role.PAGE
    assert result.storage_name == "001.jpg"


@pytest.mark.parametrize("name", ["notes.txt", "Volume 1.json", "index.html", "001_ocr.jpg",
                                  ".hidden.jpg", "Thumbs.db", "archive.zip", ""])
def test_rejected_names(name):
    assert classify(name, "Naruto").role is Role.REJECT


def test_extension_is_case_insensitive():
    assert classify("002.PNG", "Naruto").role is Role.PAGE
    assert classify("Volume 1.MOKURO", "Naruto").role is Role.SIDECAR


def test_series_cover_first_wins():
    first = classify("Naruto.png", "Naruto")
    assert first.role is Role.SERIES_COVER

    # Once claimed, another image named after the series is a plain page
    second = classify("Naruto.jpg", "Naruto", series_cover_claimed=True)
    assert second.role is Role.PAGE


def test_sidecar_is_never_a_series_cover():
    assert classify("Naruto.mokuro", "Naruto").role is Role.SIDECAR


def test_second_sidecar_is_protocol_error():
    with pytest.raises(ProtocolError):
        classify("Volume 1.mokuro", "Naruto", sidecar_claimed=True)


def test_sanitize_filename_strips_directories_and_illegal_chars():
    assert sanitize_filename("Naruto/Volume 1/001.jpg") == "001.jpg"
    assert sanitize_filename("C:\\manga\\002.jpg") == "002.jpg"
    assert sanitize_filename('what?*"is<this>.png') == "what___is_this_.png"
    assert sanitize_filename("trailing. ") == "trailing"


def test_sanitize_filename_normalizes_to_nfc():
    decomposed = "\u30cf\u309a\u30f3.jpg"  # katakana HA + combining handakuten
    assert sanitize_filename(decomposed) == "\u30d1\u30f3.jpg"


@pytest.mark.parametrize("bad", ["", "   ", ".", "..", "..."])
def test_sanitize_folder_name_rejects_unusable(bad):
    with pytest.raises(ProtocolError):
        sanitize_folder_name(bad)


def test_sanitize_folder_name_replaces_separators():
    assert sanitize_folder_name("../etc") == ".._etc"
    assert sanitize_folder_name("Naruto: Part 1") == "Naruto_ Part 1"


def test_pick_volume_cover():
    assert pick_volume_cover(["010.jpg", "002.jpg", "001.png"]) == "001.png"
    assert pick_volume_cover([]) is None
