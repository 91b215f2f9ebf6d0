#!/usr/bin/env python3
"""
Unit-тесты извлечения метаданных из имени файла: шаблоны по порядку и fallback.

Запуск из корня проекта:
  python tests/test_extractor.py
"""

from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from contracts import UNKNOWN
from extractor import ExtractedMetadata, extract_metadata, normalize_title, strip_extension


def test_title_year_quality_brackets() -> None:
    """«Title (Year) [Quality]»."""
    meta = extract_metadata("Inception (2010) [1080p].mkv")
    assert meta == ExtractedMetadata(title="Inception", year="2010", quality="1080p")


def test_dotted_title_year_quality() -> None:
    """«Title.Year.Quality»: точки в названии заменяются пробелами."""
    meta = extract_metadata("The.Matrix.1999.720p.mkv")
    assert meta == ExtractedMetadata(title="The Matrix", year="1999", quality="720p")


def test_fallback_strips_extension() -> None:
    meta = extract_metadata("randomfile.txt")
    assert meta.title == "randomfile"
    assert meta.year == UNKNOWN
    assert meta.quality == UNKNOWN


def test_year_without_quality() -> None:
    meta = extract_metadata("Heat (1995).mkv")
    assert meta == ExtractedMetadata(title="Heat", year="1995", quality=UNKNOWN)


def test_extension_is_not_quality() -> None:
    """После года только расширение: качество неизвестно."""
    meta = extract_metadata("Some.Movie.2023.mkv")
    assert meta == ExtractedMetadata(title="Some Movie", year="2023", quality=UNKNOWN)
    assert extract_metadata("Some Movie 2023 mp4.avi").quality == "mp4"


def test_numeric_title() -> None:
    meta = extract_metadata("1917.2019.1080p.WEB-DL.mkv")
    assert meta.title == "1917"
    assert meta.year == "2019"
    assert meta.quality == "1080p"


def test_caption_used_when_filename_has_no_pattern() -> None:
    """Синтезированное имя ничего не даёт, берётся первая строка подписи."""
    meta = extract_metadata("photo_5.jpg", caption="Dune.2021.2160p\nпостер")
    assert meta == ExtractedMetadata(title="Dune", year="2021", quality="2160p")


def test_filename_pattern_wins_over_caption() -> None:
    meta = extract_metadata("Heat (1995) [720p].mkv", caption="Dune.2021.2160p")
    assert meta.title == "Heat"


def test_deterministic() -> None:
    name = "Movie.Name.2023.1080p.WEB-DL.x264.mkv"
    assert extract_metadata(name) == extract_metadata(name)
    assert extract_metadata(name).title == "Movie Name"


def test_helpers() -> None:
    assert normalize_title("  Some..Movie. ") == "Some Movie"
    assert strip_extension("archive.tar.gz") == "archive.tar"
    assert strip_extension("noext") == "noext"
    assert extract_metadata("some.file.name.txt").title == "some file name"


def run_all() -> bool:
    cases = [
        ("title (year) [quality]", test_title_year_quality_brackets),
        ("title.year.quality", test_dotted_title_year_quality),
        ("fallback strips extension", test_fallback_strips_extension),
        ("year without quality", test_year_without_quality),
        ("numeric title", test_numeric_title),
        ("extension is not quality", test_extension_is_not_quality),
        ("caption fallback", test_caption_used_when_filename_has_no_pattern),
        ("filename wins over caption", test_filename_pattern_wins_over_caption),
        ("deterministic", test_deterministic),
        ("helpers", test_helpers),
    ]
    ok = 0
    for name, fn in cases:
        try:
            fn()
            ok += 1
            print(f"  OK {name}")
        except Exception as e:
            print(f"  FAIL {name}: {e!r}")
    return ok == len(cases)


if __name__ == "__main__":
    print("Metadata extractor unit tests")
    sys.exit(0 if run_all() else 1)
