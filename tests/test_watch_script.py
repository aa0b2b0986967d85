from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType

import pytest

from pyfdps.geofilter import generate_filters
from pyfdps.models import FlightPosition, Rectangle

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "geofilter_watch.py"


@pytest.fixture(scope="module")
def watch() -> ModuleType:
    spec = importlib.util.spec_from_file_location("geofilter_watch", _SCRIPT)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


def _position(lat: float, lon: float) -> tuple[str, FlightPosition]:
    topic = f"FDPS/position/ID1/ACTIVE/AAL123/{lat:.5f}/{lon:.5f}/450/35000/10/-5"
    return topic, FlightPosition.from_topic(topic, b"")


def test_coverage_stats_count_box_and_filter_hits(watch: ModuleType) -> None:
    bounds = watch.Bounds(min_lat=35.2, max_lat=35.8, min_lon=-99.8, max_lon=-99.2)
    filters = tuple(generate_filters(Rectangle.from_bounds(min_lat=35.0, max_lat=36.0, min_lon=-100.0, max_lon=-99.0)))
    stats = watch.CoverageStats(bounds=bounds)

    # Inside the box, then inside the one-degree cell but outside the box.
    assert stats.on_position(*_position(35.5, -99.5), filters) is True
    assert stats.on_position(*_position(35.1, -99.5), filters) is False

    assert stats.total_messages == 2
    assert stats.in_box == 1
    assert stats.out_of_box == 1
    assert stats.filter_hits == {"FDPS/position/*/*/*/3*/-9*/*/*/*/*": 2}


def test_coverage_stats_without_box_only_counts_filters(watch: ModuleType) -> None:
    stats = watch.CoverageStats(bounds=None)

    assert stats.on_position(*_position(35.5, -99.5), ("FDPS/position/>",)) is None

    assert stats.total_messages == 1
    assert stats.in_box == 0 and stats.out_of_box == 0
    assert stats.filter_hits == {"FDPS/position/>": 1}


def test_summary_lists_hits_per_filter(watch: ModuleType, capsys: pytest.CaptureFixture[str]) -> None:
    stats = watch.CoverageStats(bounds=watch.Bounds(35.0, 36.0, -100.0, -99.0))
    filters = ("FDPS/position/*/*/*/3*/-9*/*/*/*/*",)
    stats.on_position(*_position(35.5, -99.5), filters)

    watch._print_summary(stats, filters, runtime=1.0)

    out = capsys.readouterr().out
    assert "in_box         : 1" in out
    assert "out_of_box     : 0" in out
    assert f"       1  {filters[0]}" in out
