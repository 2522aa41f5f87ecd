#!/usr/bin/env python3
"""
demo_cli.py — Standalone command-line demo
============================================
Runs one complete scan session WITHOUT the FastAPI server: capture a clip
(or simulate one), extract vitals, interpret them and print the report.

Usage:
    python demo_cli.py --simulation
    python demo_cli.py --stop-after 10 --proxy

⚠️  DISCLAIMER: This is a WELLNESS ESTIMATION tool — NOT a medical device.
"""

import argparse
import asyncio
import sys

from api.schemas import SessionState
from api.session import SessionController
from config import RECORDING_CEILING_SECONDS
from report.parser import FindingLine, Heading, MetricTag, StatusBanner, VerdictBlock, Severity, parse_report
from utils.logger import get_logger

logger = get_logger("demo_cli")

_TAG_COLOURS = {"HR": "\033[1;31m", "BP": "\033[1;34m", "HRV": "\033[1;35m"}
_RESET = "\033[0m"


def pretty_print(label: str, value, unit: str = "") -> None:
    """Colourised terminal output."""
    print(f"  \033[1;36m{label:<28}\033[0m \033[1;33m{value}\033[0m {unit}")


def print_report(text: str) -> None:
    for block in parse_report(text):
        if isinstance(block, StatusBanner):
            colour = "\033[1;32m" if block.severity is Severity.POSITIVE else "\033[1;31m"
            print(f"\n  {colour}[ VITAL STATUS: {block.status} ]{_RESET}\n")
        elif isinstance(block, FindingLine):
            parts = []
            for seg in block.segments:
                if isinstance(seg, MetricTag):
                    parts.append(f"{_TAG_COLOURS[seg.kind.value]}{seg.kind.value}: {seg.value}{_RESET}")
                else:
                    parts.append(seg.text)
            print("    │ " + "".join(parts).strip())
        elif isinstance(block, VerdictBlock):
            print(f"\n  \033[1;37mFINAL VERDICT\033[0m  \033[3m\"{block.text}\"\033[0m")
        elif isinstance(block, Heading):
            print(f"\n  \033[1m{block.text.upper()}\033[0m")
        else:
            print(f"      {block.text}")


async def run(args) -> int:
    controller = SessionController(simulation=args.simulation, use_proxy=args.proxy)
    await controller.open()
    try:
        if controller.state is SessionState.error:
            print(f"ERROR: {controller.error_message}")
            return 1

        print("  Please look directly at the camera and stay still…\n")
        if not await controller.start():
            print(f"ERROR: {controller.error_message}")
            return 1

        limit = args.stop_after or RECORDING_CEILING_SECONDS
        while controller.state is SessionState.capturing:
            capture = controller.capture
            print(f"\r  Capturing • {capture.elapsed_seconds:>2}s / {limit}s  "
                  f"({capture.captured_bytes / 1024:.0f} KiB)", end="", flush=True)
            if args.stop_after and capture.elapsed_seconds >= args.stop_after:
                await controller.stop()
                break
            await asyncio.sleep(0.25)

        print("\n\n  Generating report…")
        while controller.state is SessionState.processing:
            await asyncio.sleep(0.1)

        if controller.state is SessionState.error:
            print(f"\n  ERROR: {controller.error_message}")
            return 1

        result = controller.result
        print("=" * 60)
        print("  RESULTS")
        print("=" * 60)
        pretty_print("Heart Rate", result.heart_rate, "BPM")
        pretty_print("HRV", result.hrv, "ms")
        pretty_print("Blood Pressure (ESTIMATED)",
                     f"{result.blood_pressure.systolic}/{result.blood_pressure.diastolic}", "mmHg")
        pretty_print("Stress Level", result.stress_level)
        pretty_print("Stored", controller.storage_status)
        print_report(result.ai_interpretation)

        print("\n" + "=" * 60)
        print("  ⚠️  DISCLAIMER: All values above are ESTIMATES.")
        print("      Do NOT use for medical diagnosis or treatment.")
        print("=" * 60 + "\n")
        return 0
    finally:
        await controller.close()


def main():
    parser = argparse.ArgumentParser(description="Face-Scan Vitals CLI Demo")
    parser.add_argument("--simulation", action="store_true", help="Skip the camera and rPPG server")
    parser.add_argument("--proxy", action="store_true", help="Send the clip through the backend proxy route")
    parser.add_argument("--stop-after", type=int, default=0, metavar="SECONDS",
                        help=f"Stop before the {RECORDING_CEILING_SECONDS}s ceiling")
    args = parser.parse_args()

    if args.stop_after and not 0 < args.stop_after < RECORDING_CEILING_SECONDS:
        parser.error(f"--stop-after must be between 1 and {RECORDING_CEILING_SECONDS - 1}")

    print("\n" + "=" * 60)
    print("  FACE-SCAN VITALS — CLI DEMO")
    print("=" * 60)
    print(f"  Mode: {'Simulation' if args.simulation else 'Live'}"
          f"{' (proxy)' if args.proxy else ''}")
    print("=" * 60 + "\n")

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
