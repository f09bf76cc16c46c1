#!/usr/bin/env python3
"""Operator command line for a running BMA backend.

Stands in for the browser extension when a listing page has been saved to
disk, and prints the BMA report in the terminal.

Usage:
    # Ingest a saved listing page
    uv run python scripts/bma_cli.py ingest listing.txt --url https://example.com/listing/1

    # List addresses
    uv run python scripts/bma_cli.py addresses

    # Print the report (cached if fresh), or force regeneration
    uv run python scripts/bma_cli.py report
    uv run python scripts/bma_cli.py report --refresh

    # Show or replace the analysis instructions
    uv run python scripts/bma_cli.py instructions
    uv run python scripts/bma_cli.py instructions --set "Focus on price per square foot"
"""

import argparse
import sys
from pathlib import Path

import httpx

DEFAULT_API_URL = "http://localhost:8080"


def _check(response: httpx.Response) -> dict | list:
    if response.is_error:
        try:
            message = response.json().get("error", response.text)
        except ValueError:
            message = response.text
        print(f"Error {response.status_code}: {message}")
        sys.exit(1)
    return response.json()


def cmd_ingest(client: httpx.Client, args: argparse.Namespace) -> None:
    path = Path(args.file)
    if not path.exists():
        print(f"File not found: {path}")
        sys.exit(1)

    print(f"Ingesting {path.name}...")
    data = _check(client.post(
        "/api/extension/page-data",
        json={"url": args.url or path.resolve().as_uri(), "content": path.read_text()},
    ))
    print(data["message"])
    print("New address created" if data["upserted"] else "Existing address updated")


def cmd_addresses(client: httpx.Client, args: argparse.Namespace) -> None:
    addresses = _check(client.get("/api/addresses"))
    if not addresses:
        print("No addresses yet")
        return

    for addr in addresses:
        flags = []
        if addr["primary"]:
            flags.append("PRIMARY")
        if addr["enabled"]:
            flags.append("enabled")
        price = addr.get("price")
        price_str = f"${price:,.0f}" if price else "-"
        print(f"{addr['id']}  {addr['addressStr']:<45} {price_str:>12}  {' '.join(flags)}")


def cmd_report(client: httpx.Client, args: argparse.Namespace) -> None:
    if args.refresh:
        report = _check(client.post("/api/bma-report/refresh"))
    else:
        report = _check(client.get("/api/bma-report"))

    primary = report.get("primaryAddress")
    print("=" * 60)
    print(f"Primary: {primary['addressStr'] if primary else '-'}")
    for comp in report.get("comparisonAddresses") or []:
        print(f"  vs {comp['addressStr']}")
    print("=" * 60)

    analysis = report.get("detailedAnalysis")
    if analysis:
        print("\nPrice analysis:")
        print(analysis["priceAnalysis"])
        print("\nFeature comparison:")
        for feature in analysis["featureComparison"]:
            print(f"  {feature['feature']}: {feature['primaryValue']}")
            for comp in feature["comparison"]:
                print(f"    {comp['address']}: {comp['value']}")
            if feature["analysis"]:
                print(f"    -> {feature['analysis']}")
        print("\nMarket trends:")
        print(analysis["marketTrends"])

    print("\nOpinion:")
    print(report["opinion"])


def cmd_instructions(client: httpx.Client, args: argparse.Namespace) -> None:
    new_text = args.set
    if args.file:
        new_text = Path(args.file).read_text()

    if new_text is None:
        data = _check(client.get("/api/llm-instructions"))
        print(data["instructions"] or "(no instructions set)")
        return

    _check(client.post("/api/llm-instructions", json={"instructions": new_text}))
    print("Instructions replaced; cached reports invalidated")


def main():
    parser = argparse.ArgumentParser(
        description="Operate a running BMA backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--api-url", default=DEFAULT_API_URL, help="Backend base URL")
    parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="Request timeout in seconds (report generation calls the LLM)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Ingest a saved listing page")
    ingest.add_argument("file", help="Text file with the listing page content")
    ingest.add_argument("--url", help="Source URL of the listing")
    ingest.set_defaults(func=cmd_ingest)

    addresses = sub.add_parser("addresses", help="List addresses")
    addresses.set_defaults(func=cmd_addresses)

    report = sub.add_parser("report", help="Print the BMA report")
    report.add_argument("--refresh", action="store_true", help="Force regeneration")
    report.set_defaults(func=cmd_report)

    instructions = sub.add_parser("instructions", help="Show or replace LLM instructions")
    group = instructions.add_mutually_exclusive_group()
    group.add_argument("--set", help="New instructions text")
    group.add_argument("--file", help="Read new instructions from a file")
    instructions.set_defaults(func=cmd_instructions)

    args = parser.parse_args()

    with httpx.Client(base_url=args.api_url, timeout=args.timeout) as client:
        try:
            args.func(client, args)
        except httpx.ConnectError:
            print(f"Could not connect to {args.api_url}")
            sys.exit(1)


if __name__ == "__main__":
    main()
