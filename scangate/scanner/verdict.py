from typing import Protocol

from loguru import logger

from scangate.exceptions import ScanFailed
from scangate.models import ScanReport


class ReportPolicy(Protocol):
    """Turns a scan report into an admit verdict.

    Implementations return True to admit and raise ScanFailed to deny.
    """

    def evaluate(self, report: ScanReport) -> bool: ...


class StatusVerdict:
    """Admit only reports whose status is ``pass`` (case-insensitive)."""

    def evaluate(self, report: ScanReport) -> bool:
        if report.passed:
            return True

        logger.info(
            "Image {} ({}) did not pass scan policy, status={!r}",
            report.tag,
            report.digest,
            report.status,
        )
        raise ScanFailed(status=report.status)
