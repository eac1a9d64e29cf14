from typing import Optional


class ScanGateException(Exception):
    """Base class for every failure that ends in a denied admission."""


class InvalidImageReference(ScanGateException):
    pass


class NotFound(ScanGateException):
    """The scanning engine has no record yet (not indexed or not scanned)."""


class RemoteUnavailable(ScanGateException):
    """The scanning engine could not be reached, or the call timed out."""


class RemoteRejected(RemoteUnavailable):
    """The scanning engine answered with a non-success status other than 404."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(ScanGateException):
    """The response body did not match the expected shape."""


class ReportIntegrityError(MalformedResponse):
    """The scan report collection violated the single-entry contract."""


class EmptyReportList(ReportIntegrityError):
    def __init__(self):
        super().__init__("Scan report list is empty")


class MultipleReportEntries(ReportIntegrityError):
    def __init__(self):
        super().__init__("Unexpected scan report: multiple entries")


class DigestMismatch(ReportIntegrityError):
    def __init__(self, digest: str):
        super().__init__("Digest in the scan report does not match")
        self.digest = digest


class MissingTagEntry(ReportIntegrityError):
    def __init__(self, digest: str):
        super().__init__(f"Scan report for {digest} has no tag entry")
        self.digest = digest


class AmbiguousTagEntries(ReportIntegrityError):
    def __init__(self, digest: str, tags: list[str]):
        super().__init__(
            f"Unexpected scan report: multiple tags for {digest}: {', '.join(tags)}"
        )
        self.digest = digest
        self.tags = tags


class ScanFailed(ScanGateException):
    """The scan completed but the verdict is not a pass."""

    def __init__(self, message: str = "Scan result is FAILED", status: Optional[str] = None):
        if status:
            message = f"{message} (status: {status})"
        super().__init__(message)
        self.status = status


class DigestUnavailable(ScanGateException):
    def __init__(self, image: str):
        super().__init__("Unable to obtain image digest")
        self.image = image
