import csv
from io import StringIO
from typing import Iterable, List, Optional

from fastapi import HTTPException, status
from fastapi.responses import StreamingResponse


def _cell(value):
    # true/false and 7 rather than True and 7.0
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_csv(rows: List[dict], headers: Optional[Iterable[str]] = None) -> str:
    """Render rows as CSV; headers default to the keys of the first row.

    None renders as an empty cell and values containing a comma, quote or
    line break are quoted with inner quotes doubled.
    """
    if not rows:
        return ""
    fieldnames = list(headers) if headers is not None else list(rows[0].keys())

    output = StringIO()
    writer = csv.DictWriter(
        output,
        fieldnames=fieldnames,
        extrasaction="ignore",
        restval="",
        lineterminator="\n"
    )
    writer.writeheader()
    for row in rows:
        writer.writerow({key: _cell(value) for key, value in row.items()})

    # Rows are joined with newlines, no trailing terminator
    return output.getvalue()[:-1]


def csv_response(rows: List[dict], filename: str, headers: Optional[Iterable[str]] = None,
                 extra_headers: Optional[dict] = None) -> StreamingResponse:
    if not rows:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No data to export"
        )

    response_headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if extra_headers:
        response_headers.update(extra_headers)

    return StreamingResponse(
        iter([to_csv(rows, headers)]),
        media_type="text/csv",
        headers=response_headers
    )
