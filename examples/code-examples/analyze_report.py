#!/usr/bin/env python3
"""
Analyze Visibility Probe reports programmatically.

This script demonstrates how to:
- Look up a company and its reports
- Read per-service metrics and per-prompt mention probabilities
- Compare the latest report against the previous one

Usage:
    python examples/code-examples/analyze_report.py https://beanthere.example
    python examples/code-examples/analyze_report.py https://beanthere.example --db ./output/visibility.db
"""

import argparse
import sys

from visibility_probe.storage.db import connect
from visibility_probe.storage.queries import (
    get_company_by_url,
    get_full_report,
    list_company_reports,
)


def print_prompt_breakdown(full_report: dict) -> None:
    """Print mention probability per prompt and service, in display order."""
    services = full_report["report"]["services"]
    for prompt in full_report["prompts"]:
        cells = []
        for service in services:
            aggregate = prompt["aggregates"].get(service, {})
            cells.append(f"{service}={aggregate.get('mention_probability', 0):.0f}%")
        print(f"  {prompt['order_index'] + 1}. {prompt['prompt_text']}")
        print(f"     {'  '.join(cells)}")


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("url", help="Company URL as configured")
    parser.add_argument("--db", default="./output/visibility.db")
    args = parser.parse_args()

    conn = connect(args.db)
    company = get_company_by_url(conn, args.url)
    if company is None:
        print(f"No company stored for {args.url}", file=sys.stderr)
        return 1

    completed = [
        r for r in list_company_reports(conn, company["id"]) if r["status"] == "completed"
    ]
    if not completed:
        print(f"No completed reports for {company['name']}", file=sys.stderr)
        return 1

    latest = get_full_report(conn, completed[0]["id"])
    overall = latest["summary"]["overall"]
    print(f"{company['name']} - report {latest['report']['id']}")
    print(f"  Visibility score: {overall['visibility_score']}")
    print(f"  Query coverage:   {overall['query_coverage']:.1f}%")
    print(f"  Mention rate:     {overall['mention_rate']:.1f}%")

    if len(completed) > 1:
        previous = completed[1]
        delta = overall["visibility_score"] - previous["visibility_score"]
        print(f"  Change since report {previous['id']}: {delta:+d}")

    print("\nPrompts:")
    print_prompt_breakdown(latest)

    print("\nTop competitors:")
    for row in latest["competitors"][:5]:
        print(f"  {row['name']}: {row['total_mentions']} mentions")

    conn.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
