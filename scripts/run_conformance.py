#!/usr/bin/env python3
"""
Conformance Run Script

Runs the configured US Core sequences against a FHIR server and prints a
per-sequence summary. Optionally writes the full report as JSON.

Usage:
    python scripts/run_conformance.py --base-url https://fhir.example.org/r4 --patient 85
    python scripts/run_conformance.py --resources CarePlan Practitioner --token abc
    python scripts/run_conformance.py --output reports/run.json --log-level DEBUG

Unset options fall back to FHIR_CONFORMANCE_* environment variables.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from conformance.config.logging import configure_logging
from conformance.config.settings import get_settings
from conformance.errors import ConfigurationError
from conformance.main import run_conformance
from conformance.models.results import RunReport, TestOutcome

OUTCOME_LABELS = {
    TestOutcome.PASS: "PASS",
    TestOutcome.FAIL: "FAIL",
    TestOutcome.SKIP: "SKIP",
    TestOutcome.OMIT: "OMIT",
    TestOutcome.ERROR: "ERROR",
}


def print_report(report: RunReport, verbose: bool = False) -> None:
    print(f"Run {report.run_id} (patient {report.patient_id or '-'})")
    print("-" * 60)
    for sequence in report.sequences:
        counts = ", ".join(
            f"{sequence.count(outcome)} {outcome.value}"
            for outcome in TestOutcome
            if sequence.count(outcome)
        )
        print(f"[{OUTCOME_LABELS[sequence.status]:5}] {sequence.title} ({counts})")
        if sequence.missing_requirements:
            print(f"        missing: {', '.join(sequence.missing_requirements)}")
        for result in sequence.results:
            if verbose or result.outcome in (TestOutcome.FAIL, TestOutcome.ERROR):
                print(f"        {result.test_id} {OUTCOME_LABELS[result.outcome]}: {result.name}")
                if result.message:
                    print(f"            {result.message}")
    if report.cancelled:
        print()
        print("Run was cancelled before all tests completed")


def main():
    """Main entry point."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run FHIR conformance sequences")
    parser.add_argument("--base-url", type=str, default=None, help="FHIR server base URL")
    parser.add_argument("--patient", type=str, default=None, help="Patient ID to test with")
    parser.add_argument("--token", type=str, default=None, help="Bearer token")
    parser.add_argument(
        "--resources",
        nargs="+",
        default=None,
        help="Resource types to test (default: all configured)",
    )
    parser.add_argument("--output", type=str, default=None, help="Write the JSON report here")
    parser.add_argument("--log-level", type=str, default=settings.log_level, help="Log level")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show every test result")
    args = parser.parse_args()

    configure_logging(level=args.log_level, json_format=settings.log_json)

    try:
        report = asyncio.run(
            run_conformance(
                base_url=args.base_url,
                patient_id=args.patient,
                token=args.token,
                resource_types=args.resources,
                settings=settings,
            )
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    print_report(report, verbose=args.verbose)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        print(f"JSON report: {output_path}")

    if report.status in (TestOutcome.FAIL, TestOutcome.ERROR):
        sys.exit(1)


if __name__ == "__main__":
    main()
