"""ZIP report bundles of a ready state.  No Flask dependency."""

import json
import logging
import zipfile
from datetime import datetime
from io import BytesIO

log = logging.getLogger("dslsight.archive")


def filename_base(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("dsl_%Y%m%d_%H%M%S")


def write_archive(fileobj, base: str, state, raw_data: bool = True):
    """Write the summary, raw capture and JSON data of a state into a ZIP."""
    with zipfile.ZipFile(fileobj, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(base + "_summary.txt", state.status.summary())
        if raw_data:
            zf.writestr(base + "_raw.txt", state.raw_data)
        zf.writestr(base + "_bins.json", json.dumps(state.bins.to_dict(), indent=2))
        zf.writestr(base + "_history.json", json.dumps(state.bins_history.to_dict(), indent=2))
        zf.writestr(base + "_errors.json", json.dumps(state.errors_history.to_dict(), indent=2))


def create_archive(state, raw_data: bool = True):
    """Build an archive in memory. Returns (filename, bytes)."""
    base = filename_base(state.time)
    buf = BytesIO()
    write_archive(buf, base, state, raw_data=raw_data)
    log.info("Created archive %s.zip (%d bytes)", base, buf.tell())
    return base + ".zip", buf.getvalue()
