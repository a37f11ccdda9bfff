"""Reference and test list parsing."""
import logging
import os

import pytest

from target_recognition.exceptions import ConfigurationFailure
from target_recognition.list_parser import (
    load_reference_list,
    load_test_list,
    mask_filename,
    parse_reference_line,
    parse_test_line,
)


class TestReferenceLines:
    def test_id_and_color(self):
        entry = parse_reference_line("5_front.jpg : 5 : 255 128 0")

        assert entry.filename == "5_front.jpg"
        assert entry.target_id == 5
        # stored in drawing (BGR) order
        assert entry.color == (0, 128, 255)

    def test_labelled_tokens(self):
        entry = parse_reference_line("20.png value:20 color: 10 20 30")
        assert entry.target_id == 20
        assert entry.color == (30, 20, 10)

    def test_missing_color_defaults_to_green(self):
        assert parse_reference_line("a.png : 7").color == (0, 255, 0)

    def test_malformed(self):
        assert parse_reference_line("only_a_name.png") is None
        assert parse_reference_line("a.png : five") is None


class TestTestLines:
    def test_expected_ids_keep_repetitions(self):
        entry = parse_test_line("scene1.jpg : 5 10 10 50")
        assert entry.filename == "scene1.jpg"
        assert entry.expected == [5, 10, 10, 50]

    def test_image_without_targets(self):
        assert parse_test_line("empty.jpg").expected == []


def test_mask_filename():
    assert mask_filename("coins/5_front.jpg") == os.path.join("coins", "5_front_mask.png")
    assert mask_filename("a.jpg", suffix="-roi", extension=".bmp") == "a-roi.bmp"


def test_load_reference_list(tmp_path):
    list_file = tmp_path / "refs.txt"
    list_file.write_text(
        "# reference targets\n"
        "5.png : 5 : 255 0 0\n"
        "\n"
        "broken line\n"
        "zero.png : 0 : 1 2 3\n"
        "10.jpg : 10 : 0 0 255\n"
    )

    entries = load_reference_list(str(list_file), images_dir="refs")

    assert [(e.filename, e.target_id) for e in entries] == [("5.png", 5), ("10.jpg", 10)]
    assert entries[1].image_path == os.path.join("refs", "10.jpg")
    assert entries[1].mask_path == os.path.join("refs", "10_mask.png")
    assert entries[1].color == (255, 0, 0)


def test_load_test_list(tmp_path):
    list_file = tmp_path / "tests.txt"
    list_file.write_text("a.png : 5 5\nb.png :\n")

    entries = load_test_list(str(list_file), images_dir="imgs")

    assert [(e.filename, e.expected) for e in entries] == [("a.png", [5, 5]), ("b.png", [])]
    assert entries[0].image_path == os.path.join("imgs", "a.png")


def test_unreadable_list_is_a_configuration_failure(tmp_path):
    with pytest.raises(ConfigurationFailure):
        load_reference_list(str(tmp_path / "missing.txt"))
    with pytest.raises(ConfigurationFailure):
        load_test_list(str(tmp_path / "missing.txt"))


def test_malformed_line_is_reported_with_its_file_line_number(tmp_path, caplog):
    list_file = tmp_path / "refs.txt"
    list_file.write_text("# header\n\n5.png : 5\nbroken\n")

    with caplog.at_level(logging.WARNING, logger="target_recognition.list_parser"):
        entries = load_reference_list(str(list_file))

    assert [e.target_id for e in entries] == [5]
    assert "malformed reference line 4 in" in caplog.text
