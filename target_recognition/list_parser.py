"""Parsing of reference and test image lists.

Reference list, one target per line::

    filename separator target_id separator red green blue

Test list, one image per line::

    filename separator expected_id expected_id ...

Separators are free-form tokens (``:`` or ``value:`` style); a token such as
``value:5`` is read as ``5``. Blank lines and lines starting with ``#`` are
ignored.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Tuple

from .exceptions import ConfigurationFailure
from .types import ReferenceEntry, TestEntry

logger = logging.getLogger(__name__)

MASK_SUFFIX = "_mask"
MASK_EXTENSION = ".png"


def _numeric_tokens(tokens: List[str]) -> List[int]:
    values: List[int] = []
    for token in tokens:
        candidate = token.rsplit(":", 1)[-1]
        if not candidate:
            continue
        try:
            values.append(int(candidate))
        except ValueError:
            continue
    return values


def _read_lines(list_path: str) -> List[Tuple[int, str]]:
    """Non-blank, non-comment lines as (line_number, text), numbered as in the file."""
    try:
        with open(list_path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError as exc:
        raise ConfigurationFailure(f"Cannot open list file {list_path}: {exc}") from exc

    return [
        (line_number, line.strip())
        for line_number, line in enumerate(lines, start=1)
        if line.strip() and not line.lstrip().startswith("#")
    ]


def mask_filename(reference_filename: str, suffix: str = MASK_SUFFIX, extension: str = MASK_EXTENSION) -> str:
    """``coins/5_front.jpg`` -> ``coins/5_front_mask.png``"""
    stem, _ = os.path.splitext(reference_filename)
    if not stem:
        raise ValueError(f"Reference filename has no name: {reference_filename!r}")
    return f"{stem}{suffix}{extension}"


def parse_reference_line(line: str) -> Optional[ReferenceEntry]:
    tokens = line.split()
    if len(tokens) < 2:
        return None

    values = _numeric_tokens(tokens[1:])
    if not values:
        return None

    target_id = values[0]
    color_values = values[1:4]
    if len(color_values) == 3:
        red, green, blue = color_values
        color = (blue, green, red)
    else:
        color = (0, 255, 0)

    return ReferenceEntry(filename=tokens[0], target_id=target_id, color=color)


def parse_test_line(line: str) -> Optional[TestEntry]:
    tokens = line.split()
    if not tokens:
        return None
    return TestEntry(filename=tokens[0], expected=_numeric_tokens(tokens[1:]))


def load_reference_list(
    list_path: str,
    images_dir: str = "",
    mask_suffix: str = MASK_SUFFIX,
    mask_extension: str = MASK_EXTENSION,
) -> List[ReferenceEntry]:
    """
    Load the reference list and resolve image and mask paths
    Args:
        list_path: Path to the reference list file
        images_dir: Directory the listed filenames are relative to
        mask_suffix: Suffix appended to the filename stem to find the mask
        mask_extension: Extension of mask files
    Returns:
        Parsed entries; malformed lines are skipped with a warning
    Raises:
        ConfigurationFailure: the list file cannot be opened
    """
    entries: List[ReferenceEntry] = []
    for line_number, line in _read_lines(list_path):
        entry = parse_reference_line(line)
        if entry is None or entry.target_id <= 0:
            logger.warning("Skipping malformed reference line %d in %s: %r", line_number, list_path, line)
            continue
        entry.image_path = os.path.join(images_dir, entry.filename)
        entry.mask_path = os.path.join(images_dir, mask_filename(entry.filename, mask_suffix, mask_extension))
        entries.append(entry)
    return entries


def load_test_list(list_path: str, images_dir: str = "") -> List[TestEntry]:
    """Load the test list; raises ConfigurationFailure if it cannot be opened."""
    entries: List[TestEntry] = []
    for _, line in _read_lines(list_path):
        entry = parse_test_line(line)
        if entry is None:
            continue
        entry.image_path = os.path.join(images_dir, entry.filename)
        entries.append(entry)
    return entries
