import asyncio
import sys
from typing import List

import typer
from loguru import logger

from scangate.admission.evaluator import AdmissionEvaluator
from scangate.config import ScannerSettings
from scangate.exceptions import ScanGateException
from scangate.scanner.client import ScanReportClient

app = typer.Typer(no_args_is_help=True)


async def _check(images: List[str]):
    async with ScanReportClient(ScannerSettings()) as client:
        return await AdmissionEvaluator(client).evaluate_images(images)


async def _report(image: str):
    async with ScanReportClient(ScannerSettings()) as client:
        return await client.get_scan_report(image)


def check_images(
    images: List[str] = typer.Argument(..., help="Image references, checked in order"),
):
    decision = asyncio.run(_check(images))
    if decision.allowed:
        print("allowed")
        sys.exit(0)

    print(f"denied: {decision.reason}")
    sys.exit(1)


def scan_report(
    image: str = typer.Argument(..., help="Image reference"),
):
    try:
        report = asyncio.run(_report(image))
    except ScanGateException as e:
        logger.error(f"Failed to fetch scan report for {image}:\n{e}")
        sys.exit(1)

    print(report.model_dump_json(indent=2))


app.command(name="check", help="Check images against their scan results.")(check_images)
app.command(name="report", help="Print the latest scan report of an image.")(scan_report)

if __name__ == "__main__":
    app()
