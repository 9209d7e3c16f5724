import csv
import io
import re
from typing import Iterable, Optional

import bleach


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied string before it is stored and displayed.

    - Strips HTML tags using bleach.clean(..., strip=True)
    - Removes NULL bytes and collapses runs of whitespace
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=[], strip=True)
    # bleach escapes bare ampersands; "Food & Drinks" must group as typed
    val = val.replace("&amp;", "&")
    val = re.sub(r"\s+", " ", val)
    return val.strip()


def expenses_to_csv(expenses: Iterable) -> str:
    """Render expenses as CSV text, one row per expense."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Date", "Description", "Amount", "Category"])
    for e in expenses:
        writer.writerow([e.date.isoformat(), e.description or "", e.amount, e.category or "Uncategorized"])
    return buf.getvalue()
