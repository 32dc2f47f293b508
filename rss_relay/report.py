from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .models import DeliveryFailureLog
from .storage import NewsStore

RECENT_FAILURES_LIMIT = 100

_TOTALS_RULE = "+----------------+-------------+----------------+----------------+----------------+------------------+"
_FAILURES_RULE = "+----------------+---------------------+------------------------------+------------------------------------+"


def _clip(text: str, width: int) -> str:
    text = (text or "").replace("\n", " ")
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def build_report(
    totals: Sequence[Dict[str, Any]],
    failures: Sequence[DeliveryFailureLog],
    *,
    version: str = "",
) -> str:
    """Plain-text summary: lifetime totals per source, then the latest delivery failures."""
    lines: List[str] = []
    lines.append(f"Server Running{' V:' + version if version else ''}")
    lines.append("")
    lines.append("=== RSS Sources Overall Statistics (All Time Summary) ===")
    lines.append("")
    lines.append(_TOTALS_RULE)
    lines.append("| Source         | Executions  | Total Fetched  | Total Inserted | Total Sent     | Total Failed     |")
    lines.append(_TOTALS_RULE)
    for row in sorted(totals, key=lambda r: str(r.get("source", ""))):
        lines.append(
            f"| {_clip(str(row.get('source', '')), 14):<14} "
            f"| {int(row.get('executions', 0)):>11} "
            f"| {int(row.get('total_fetched', 0)):>14} "
            f"| {int(row.get('new_inserted', 0)):>14} "
            f"| {int(row.get('sent', 0)):>14} "
            f"| {int(row.get('failed', 0)):>16} |"
        )
    lines.append(_TOTALS_RULE)
    lines.append("")
    lines.append("")
    lines.append(f"=== Last {RECENT_FAILURES_LIMIT} Delivery Errors (Newest First) ===")
    lines.append("")

    if not failures:
        lines.append("No errors recorded.")
    else:
        lines.append(_FAILURES_RULE)
        lines.append("| Source         | Timestamp           | News Title                   | Error Message                      |")
        lines.append(_FAILURES_RULE)
        for f in failures:
            lines.append(
                f"| {_clip(f.source, 14):<14} "
                f"| {f.timestamp.strftime('%Y-%m-%d %H:%M:%S'):<19} "
                f"| {_clip(f.title, 28):<28} "
                f"| {_clip(f.error, 34):<34} |"
            )
        lines.append(_FAILURES_RULE)

    return "\n".join(lines) + "\n"


async def render_report(store: NewsStore, *, version: str = "") -> str:
    totals = await store.run_log_totals()
    failures = await store.recent_delivery_failures(RECENT_FAILURES_LIMIT)
    return build_report(totals, failures, version=version)
