import asyncio
from typing import Dict, List, Optional, Tuple

from loguru import logger

from scangate.exceptions import RemoteUnavailable, ScanGateException
from scangate.models import AdmissionDecision
from scangate.scanner.client import ScanReportClient


CONTAINER_FIELDS = ("initContainers", "containers", "ephemeralContainers")


def find_pod_spec(obj: Dict) -> Tuple[str, Dict]:
    """Return the JSON pointer and body of the pod spec inside ``obj``.

    Handles bare pods, workloads with a pod template and CronJobs.
    """
    spec = obj.get("spec") or {}
    if "template" in spec:
        return "/spec/template/spec", (spec.get("template") or {}).get("spec") or {}
    if "jobTemplate" in spec:
        template = ((spec.get("jobTemplate") or {}).get("spec") or {}).get("template") or {}
        return "/spec/jobTemplate/spec/template/spec", template.get("spec") or {}
    return "/spec", spec


def extract_images(obj: Dict) -> List[str]:
    """Collect container images in declaration order, each listed once."""
    _, spec = find_pod_spec(obj)

    images = []
    for field in CONTAINER_FIELDS:
        for container in spec.get(field) or []:
            image = container.get("image")
            if image is not None and image not in images:
                images.append(image)
    return images


class AdmissionEvaluator:
    """Admits a pod only when every one of its images passes its scan."""

    def __init__(self, client: ScanReportClient, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout

    async def evaluate_pod(self, obj: Dict) -> AdmissionDecision:
        return await self.evaluate_images(extract_images(obj))

    async def evaluate_images(self, images: List[str]) -> AdmissionDecision:
        try:
            return await asyncio.wait_for(self._evaluate(images), timeout=self.timeout)
        except asyncio.TimeoutError:
            error = RemoteUnavailable(
                f"Timed out after {self.timeout}s waiting for image scan results"
            )
            logger.error("Denying {}: {}", images, error)
            return AdmissionDecision.deny(str(error))

    async def _evaluate(self, images: List[str]) -> AdmissionDecision:
        digests = {}
        for image in images:
            try:
                report = await self.client.verify_image(image)
            except ScanGateException as e:
                logger.info("Image {} rejected: {}", image, e)
                return AdmissionDecision.deny(f"Image {image}: {e}", digests=digests)

            digests[image] = report.digest
            logger.info("Image {} ({}) passed scan", image, report.digest)

        return AdmissionDecision.allow(digests=digests)
