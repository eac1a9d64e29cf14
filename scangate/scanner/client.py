from typing import Any, Dict, List, Optional

import backoff
import httpx
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from scangate.config import ScannerSettings
from scangate.exceptions import (
    AmbiguousTagEntries,
    DigestMismatch,
    DigestUnavailable,
    EmptyReportList,
    InvalidImageReference,
    MalformedResponse,
    MissingTagEntry,
    MultipleReportEntries,
    NotFound,
    RemoteRejected,
    RemoteUnavailable,
    ScanGateException,
)
from scangate.images import parse_image_reference
from scangate.models import ImageRecord, ScanReport
from scangate.scanner.verdict import ReportPolicy, StatusVerdict


_image_records = TypeAdapter(List[ImageRecord])


class ScanReportClient:
    """Async client for the remote scanning engine (Anchore Engine API).

    Resolves image references to digests, registers images for analysis
    and fetches the latest policy evaluation for a digest. The underlying
    ``httpx.AsyncClient`` may be injected; it is shared by all requests.
    """

    def __init__(
        self,
        settings: ScannerSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        policy: Optional[ReportPolicy] = None,
    ):
        self.settings = settings
        self.policy = policy or StatusVerdict()
        self._auth = httpx.BasicAuth(settings.token, "")
        self._owns_client = http_client is None
        self.http_client = http_client or self._create_client(settings)

        if not settings.verify_tls:
            logger.warning(
                "TLS certificate verification is disabled for scanning engine at {}",
                settings.url,
            )

    @staticmethod
    def _create_client(settings: ScannerSettings) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=settings.verify_tls,
            timeout=httpx.Timeout(settings.timeout),
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self):
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "ScanReportClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        full_url = f"{self.settings.url}{path}"
        logger.info("Sending {} request to {}, params={} body={}", method, full_url, params, body)

        try:
            response = await self.http_client.request(
                method,
                full_url,
                params=params,
                json=body,
                auth=self._auth,
                headers={"Content-Type": "application/json"},
                timeout=self.settings.timeout,
            )
        except httpx.TimeoutException as e:
            raise RemoteUnavailable(f"request to scanning engine timed out: {full_url}") from e
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"failed to complete request to scanning engine: {e}") from e

        if response.status_code == 404:
            raise NotFound("response from scanning engine: 404")
        if response.status_code != 200:
            raise RemoteRejected(
                f"response from scanning engine: {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(f"failed to decode JSON from scanning engine: {e}") from e

    async def register_image(self, image: str):
        """Ask the engine to track and analyze ``image``.

        Adding an image that is already known returns the existing record,
        so repeated registration is safe.
        """
        await self._request("POST", "/images", body={"tag": image})
        logger.info("Added image to scanning engine: {}", image)

    async def resolve_digest(self, image: str) -> str:
        """Return the digest of the first image record matching ``image``."""
        response = await self._request(
            "GET", "/images", params={"tag": image, "history": "true"}
        )

        try:
            records = _image_records.validate_python(self._json(response))
        except ValidationError as e:
            raise MalformedResponse(f"unexpected image list from scanning engine: {e}") from e

        if not records:
            raise NotFound(f"no image record for {image}")
        return records[0].image_digest

    def _log_retry(self, details):
        logger.warning(
            "Digest for {} not available yet (attempt {}/{}), retrying in {:.1f}s",
            details["args"][0],
            details["tries"],
            self.settings.digest_attempts,
            details["wait"],
        )

    def _log_giveup(self, details):
        logger.error(
            "Giving up resolving digest for {} after {} attempts",
            details["args"][0],
            details["tries"],
        )

    async def get_digest_with_retry(self, image: str) -> str:
        """Register ``image`` and resolve its digest.

        Resolution is retried on NotFound with a constant interval until the
        attempt budget is spent; the last NotFound is then raised. The waits
        are asyncio sleeps, so cancelling the caller aborts the loop.
        """
        parsed = parse_image_reference(image)
        await self.register_image(image)

        if parsed.is_digest:
            return parsed.digest

        resolve = backoff.on_exception(
            backoff.constant,
            NotFound,
            max_tries=self.settings.digest_attempts,
            interval=self.settings.digest_interval,
            jitter=None,
            on_backoff=self._log_retry,
            on_giveup=self._log_giveup,
            logger=None,
        )(self.resolve_digest)

        return await resolve(image)

    async def get_report(self, digest: str, tag: str) -> ScanReport:
        """Fetch the latest detailed scan report for ``digest`` under ``tag``.

        A missing report (scan still running) is raised as NotFound and is
        not retried here.
        """
        try:
            response = await self._request(
                "GET",
                f"/images/{digest}/check",
                params={"tag": tag, "history": "false", "detail": "true"},
            )
        except NotFound as e:
            logger.warning("Image {} with tag {} has not been scanned", digest, tag)
            raise NotFound("Image has not been scanned yet") from e
        except ScanGateException as e:
            logger.error("Scan report error for {}: {}", digest, e)
            raise

        logger.debug("Scan report response body: {}", response.text.replace("\t", "  "))

        try:
            return self._extract_report(self._json(response), digest)
        except MalformedResponse as e:
            logger.error("Invalid scan report for {} ({}): {}", tag, digest, e)
            raise

    @staticmethod
    def _extract_report(collection: Any, digest: str) -> ScanReport:
        # [{digest: {full_tag: [report, ...]}}], exactly one of each level
        if not isinstance(collection, list):
            raise MalformedResponse("scan report is not a list")
        if len(collection) == 0:
            raise EmptyReportList()
        if len(collection) > 1:
            raise MultipleReportEntries()

        entry = collection[0]
        if not isinstance(entry, dict):
            raise MalformedResponse("scan report entry is not a mapping")
        if digest not in entry:
            raise DigestMismatch(digest)

        tags = entry[digest]
        if not isinstance(tags, dict):
            raise MalformedResponse(f"scan report for {digest} is not a mapping of tags")
        if len(tags) == 0:
            raise MissingTagEntry(digest)
        if len(tags) > 1:
            raise AmbiguousTagEntries(digest, sorted(tags))

        (full_tag, reports), = tags.items()
        if not isinstance(reports, list) or not reports or not isinstance(reports[0], dict):
            raise MalformedResponse(f"scan report for {full_tag} has no evaluations")

        try:
            return ScanReport.model_validate({**reports[0], "digest": digest, "tag": full_tag})
        except ValidationError as e:
            raise MalformedResponse(f"invalid scan report for {full_tag}: {e}") from e

    async def _digest_for(self, image: str) -> str:
        try:
            return await self.get_digest_with_retry(image)
        except InvalidImageReference:
            raise
        except ScanGateException as e:
            logger.error("Unable to obtain digest for {}: {}", image, e)
            raise DigestUnavailable(image) from e

    async def get_scan_report(self, image: str) -> ScanReport:
        digest = await self._digest_for(image)
        return await self.get_report(digest, image)

    async def verify_image(self, image: str) -> ScanReport:
        """Return the scan report of ``image`` if it passes the policy.

        Raises a ScanGateException otherwise; ScanFailed for a completed scan
        with a failing verdict.
        """
        report = await self.get_scan_report(image)
        self.policy.evaluate(report)
        return report

    async def check_image(self, image: str) -> bool:
        await self.verify_image(image)
        return True
