import logging

import pytest

from gapfill.core.bands import Band
from gapfill.core.dates import Date
from gapfill.imagery.discovery import MULTISPECTRAL, RADAR, DateDirectoryDiscovery

pytestmark = pytest.mark.unit


@pytest.fixture
def data_dir(tmp_path):
    for name in ["2023-05-03", "2023-05-01", "2023-06-10"]:
        folder = tmp_path / name
        folder.mkdir()
        (folder / Band.B04.filename).touch()
    (tmp_path / "2023-05-02").mkdir()          # radar only
    (tmp_path / "2023-05-02" / "VV.tif").touch()
    (tmp_path / "2023-02-30").mkdir()          # not a calendar day
    (tmp_path / "notes").mkdir()
    (tmp_path / "2023-05-04.tif").touch()      # a file, not a directory
    return tmp_path


def test_discover_sorted_with_kind(data_dir):
    entries = DateDirectoryDiscovery(data_dir).discover()
    assert [e.date for e in entries] == [
        Date(2023, 5, 1), Date(2023, 5, 2), Date(2023, 5, 3), Date(2023, 6, 10)
    ]
    kinds = {e.date: e.kind for e in entries}
    assert kinds[Date(2023, 5, 2)] == RADAR
    assert kinds[Date(2023, 5, 1)] == MULTISPECTRAL


def test_discover_date_range_inclusive(data_dir):
    entries = DateDirectoryDiscovery(data_dir).discover(Date(2023, 5, 2), Date(2023, 5, 3))
    assert [e.date for e in entries] == [Date(2023, 5, 2), Date(2023, 5, 3)]


def test_invalid_calendar_name_warns(data_dir, caplog):
    with caplog.at_level(logging.WARNING, logger="gapfill.imagery.discovery"):
        DateDirectoryDiscovery(data_dir).discover()
    assert "2023-02-30" in caplog.text


def test_missing_directory_is_empty(tmp_path):
    assert DateDirectoryDiscovery(tmp_path / "absent").discover() == []


def test_missing_bands(data_dir):
    entry = DateDirectoryDiscovery(data_dir).discover()[0]
    assert DateDirectoryDiscovery.missing_bands(entry, [Band.B04, Band.B08]) == [Band.B08]
