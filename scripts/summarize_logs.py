#!/usr/bin/env python3
"""Summarize docmatch JSON line logs for ops/CI usage."""

from __future__ import annotations

import argparse
import json
import math
from collections import Counter
from pathlib import Path
from typing import Any

_HUMAN_KEYS = (
    "lines_total",
    "parse_errors",
    "event_counts",
    "http_status_counts",
    "batch_runs",
    "batch_success_rate_mean",
    "batch_success_rate_min",
    "extraction_confidence_p50",
    "extraction_confidence_p95",
    "top_failed_fields",
)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Summarize docmatch structured logs.")
    parser.add_argument("files", nargs="+", help="One or more log files with JSON event lines.")
    parser.add_argument("--json", action="store_true", help="Output JSON.")
    return parser.parse_args()


def _percentile(values: list[float], p: float) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, math.ceil((p / 100) * len(ordered)) - 1))
    return ordered[index]


def _event_payload(line: str) -> dict[str, Any] | None:
    """Decode one line; text before the first ``{`` (a logging prefix) is ignored."""

    start = line.find("{")
    if start < 0:
        return None
    try:
        payload = json.loads(line[start:])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def summarize_log_files(paths: list[Path]) -> dict[str, Any]:
    event_counts: Counter[str] = Counter()
    status_counts: Counter[str] = Counter()
    batch_success_rates: list[float] = []
    extraction_confidences: list[float] = []
    failed_field_counts: Counter[str] = Counter()
    parse_errors = 0
    lines_total = 0

    for path in paths:
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError:
            parse_errors += 1
            continue

        for line in lines:
            lines_total += 1
            raw = line.strip()
            if not raw:
                continue

            payload = _event_payload(raw)
            if payload is None:
                parse_errors += 1
                continue

            event = payload.get("event")
            if isinstance(event, str):
                event_counts[event] += 1

            if "status_code" in payload:
                status_counts[str(payload["status_code"])] += 1

            if event == "batch_match_complete":
                success_rate = payload.get("success_rate")
                if isinstance(success_rate, int | float):
                    batch_success_rates.append(float(success_rate))

            if event == "extraction_complete":
                confidence = payload.get("overall_confidence")
                if isinstance(confidence, int | float):
                    extraction_confidences.append(float(confidence))
                failed = payload.get("failed_fields")
                if isinstance(failed, list):
                    failed_field_counts.update(str(name) for name in failed)

    return {
        "files": [str(path) for path in paths],
        "lines_total": lines_total,
        "parse_errors": parse_errors,
        "event_counts": dict(sorted(event_counts.items())),
        "http_status_counts": dict(sorted(status_counts.items())),
        "batch_runs": len(batch_success_rates),
        "batch_success_rate_mean": (
            round(sum(batch_success_rates) / len(batch_success_rates), 4)
            if batch_success_rates
            else None
        ),
        "batch_success_rate_min": min(batch_success_rates) if batch_success_rates else None,
        "extraction_confidence_p50": _percentile(extraction_confidences, 50),
        "extraction_confidence_p95": _percentile(extraction_confidences, 95),
        "top_failed_fields": dict(
            sorted(failed_field_counts.items(), key=lambda item: (-item[1], item[0]))[:10]
        ),
    }


def main() -> None:
    args = _parse_args()
    paths = [Path(item).expanduser() for item in args.files]
    summary = summarize_log_files(paths)

    if args.json:
        print(json.dumps(summary, ensure_ascii=False, indent=2, sort_keys=True))
        return

    print("Docmatch Log Summary")
    print(f"files={len(summary['files'])}")
    for key in _HUMAN_KEYS:
        print(f"{key}={summary[key]}")


if __name__ == "__main__":
    main()
