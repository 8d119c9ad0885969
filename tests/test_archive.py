"""Tests for ZIP report bundles."""

import io
import json
import zipfile
from datetime import datetime

from dslsight.archive import create_archive, filename_base, write_archive
from dslsight.history import BinsHistoryEngine, ErrorsHistoryEngine
from dslsight.supervisor import StateChange

from conftest import make_bins, make_status


def _state():
    return StateChange(
        state="ready",
        has_data=True,
        time=datetime(2024, 3, 1, 12, 30, 5).timestamp(),
        raw_data=b"////// DSL Overview\n\n{}\n\n",
        status=make_status(),
        bins=make_bins(),
        bins_history=BinsHistoryEngine().data(),
        errors_history=ErrorsHistoryEngine().data(),
    )


def test_filename_base():
    assert filename_base(datetime(2024, 3, 1, 12, 30, 5).timestamp()) == "dsl_20240301_123005"


def test_create_archive():
    state = _state()
    filename, data = create_archive(state)
    assert filename == "dsl_20240301_123005.zip"

    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.read("dsl_20240301_123005_summary.txt").decode() == state.status.summary()
        errors = json.loads(zf.read("dsl_20240301_123005_errors.json"))
        assert errors["period_count"] == 288
        history = json.loads(zf.read("dsl_20240301_123005_history.json"))
        assert set(history["snr"]) == {"downstream", "upstream"}


def test_without_raw_data():
    buf = io.BytesIO()
    write_archive(buf, "report", _state(), raw_data=False)
    with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as zf:
        assert "report_raw.txt" not in zf.namelist()
        assert "report_bins.json" in zf.namelist()
