# src/scancore/utils/export_utils.py
import csv
import datetime
import html
import io
import json
from typing import Any, Dict, List

from scancore.engine.states import JobSnapshot

EXPORT_FORMATS = {
    "json": "application/json",
    "csv": "text/csv",
    "html": "text/html",
}

CSV_COLUMNS = [
    "file_name", "job_id", "status", "vulnerabilities",
    "high", "medium", "low", "info", "score", "error",
]


def export_entry(snapshot: JobSnapshot) -> Dict[str, Any]:
    """
    Flatten a finished child scan into one export row (plus its findings).
    """
    entry = {
        "file_name": snapshot.source_name,
        "job_id": snapshot.job_id,
        "status": snapshot.status.value,
        "vulnerabilities": 0,
        "high": 0,
        "medium": 0,
        "low": 0,
        "info": 0,
        "score": None,
        "error": snapshot.error,
        "findings": [],
    }
    report = snapshot.result
    if report is not None:
        entry.update({
            "vulnerabilities": report.summary.total,
            "high": report.summary.high,
            "medium": report.summary.medium,
            "low": report.summary.low,
            "info": report.summary.info,
            "score": report.score,
            "findings": [f.model_dump(mode="json") for f in report.findings],
        })
    return entry


def to_json(batch: Dict[str, Any], entries: List[Dict[str, Any]], summary: Dict[str, Any]) -> bytes:
    payload = {
        "format": "json",
        "export_time": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "batch": batch,
        "summary": summary,
        "results": entries,
    }
    return json.dumps(payload, indent=4).encode("utf-8")


def to_csv(entries: List[Dict[str, Any]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for entry in entries:
        writer.writerow({k: ("" if entry.get(k) is None else entry.get(k)) for k in CSV_COLUMNS})
    return buffer.getvalue().encode("utf-8")


def _html_finding(finding: Dict[str, Any]) -> str:
    return (
        f'<li class="{html.escape(finding["severity"])}">'
        f'<strong>[{html.escape(finding["severity"].upper())}] {html.escape(finding["title"])}</strong>'
        f' line {finding["line"]} ({html.escape(", ".join(finding.get("reported_by") or [finding["tool"]]))})'
        f'<p>{html.escape(finding.get("description") or "")}</p>'
        f'<p><em>{html.escape(finding.get("recommendation") or "")}</em></p>'
        f"</li>"
    )


def to_html(batch: Dict[str, Any], entries: List[Dict[str, Any]], summary: Dict[str, Any]) -> bytes:
    """
    Render a standalone HTML report: a summary block followed by one section per scanned file.
    """
    rows = "".join(
        f"<tr><th>{html.escape(str(key).replace('_', ' ').title())}</th>"
        f"<td>{html.escape(', '.join(value) if isinstance(value, list) else str(value))}</td></tr>"
        for key, value in summary.items()
        if key != "recommendations"
    )
    recommendations = "".join(f"<li>{html.escape(r)}</li>" for r in summary.get("recommendations") or [])
    sections = []
    for entry in entries:
        findings = "".join(_html_finding(f) for f in entry["findings"])
        error = f'<p class="error">{html.escape(entry["error"])}</p>' if entry.get("error") else ""
        sections.append(
            f'<section><h2>{html.escape(entry["file_name"])}</h2>'
            f'<p>Status: {html.escape(entry["status"])} | Score: {entry["score"] if entry["score"] is not None else "-"}'
            f' | Vulnerabilities: {entry["vulnerabilities"]}</p>'
            f"{error}<ul>{findings}</ul></section>"
        )
    document = (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>Batch Scan Report {html.escape(batch['batch_id'])}</title></head><body>"
        f"<h1>Batch Scan Report {html.escape(batch['batch_id'])}</h1>"
        f"<p>Status: {html.escape(batch['status'])} | Progress: {batch['progress']}%</p>"
        f"<table>{rows}</table>"
        f"<h2>Recommendations</h2><ul>{recommendations}</ul>"
        f"{''.join(sections)}"
        "</body></html>"
    )
    return document.encode("utf-8")


def render_export(fmt: str, batch: Dict[str, Any], entries: List[Dict[str, Any]], summary: Dict[str, Any]) -> bytes:
    if fmt == "json":
        return to_json(batch, entries, summary)
    if fmt == "csv":
        return to_csv(entries)
    if fmt == "html":
        return to_html(batch, entries, summary)
    raise ValueError(f"Unsupported export format: {fmt}")
