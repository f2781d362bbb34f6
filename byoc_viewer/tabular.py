"""Decoder for the fixed-column tables printed by the cluster control CLI."""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Blank line plus "N rows. Query took ..." after the data rows.
FOOTER_LINES = 2

_LABEL = re.compile(r"\S+")


class DecodeError(Exception):
    """Raised when a control-plane payload cannot be decoded."""
    pass


@dataclass
class TabularData:
    """Header-indexed rows decoded from columnar text."""
    headers: Dict[str, int] = field(default_factory=dict)
    rows: List[List[str]] = field(default_factory=list)

    def column(self, row: List[str], name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the cell for column ``name`` in ``row``, or ``default``."""
        index = self.headers.get(name)
        if index is None or index >= len(row):
            return default
        return row[index]


def _split_row(line: str, offsets: List[int]) -> List[str]:
    """Cut a data line at the header offsets.

    A value wider than its column overflows into the next one: the cut moves
    forward to the end of the non-blank run, and the next cell starts there.
    """
    cells = []
    cursor = 0
    last = len(offsets) - 1
    for i, start in enumerate(offsets):
        begin = max(start, cursor)
        if i == last:
            end = len(line)
        else:
            end = max(offsets[i + 1], begin)
            while 0 < end < len(line) and end > begin and not line[end - 1].isspace() and not line[end].isspace():
                end += 1
        cells.append(line[begin:end].strip())
        cursor = end
    return cells


def decode_table(text: str) -> TabularData:
    """Decode a header line, data rows and a two line footer.

    Decoding is best effort: anything that does not look like a table yields an
    empty ``TabularData`` instead of an exception.
    """
    try:
        if not isinstance(text, str):
            raise DecodeError(f"expected text, got {type(text).__name__}")

        lines = text.rstrip("\n").split("\n")
        header = lines[0].rstrip()
        labels = list(_LABEL.finditer(header))
        if not labels:
            raise DecodeError("missing header line")

        offsets = [match.start() for match in labels]
        headers = {match.group(): index for index, match in enumerate(labels)}

        body = lines[1:len(lines) - FOOTER_LINES] if len(lines) > FOOTER_LINES else []
        rows = [_split_row(line.rstrip(), offsets) for line in body if line.strip()]
        return TabularData(headers=headers, rows=rows)
    except DecodeError as e:
        logger.debug(f"Could not decode tabular output: {e}")
        return TabularData()
