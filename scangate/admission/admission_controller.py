import base64
import json
from typing import Dict, List, Optional

from loguru import logger

from scangate.admission.evaluator import CONTAINER_FIELDS, AdmissionEvaluator, find_pod_spec
from scangate.exceptions import InvalidImageReference
from scangate.images import parse_image_reference
from scangate.models import AdmissionDecision


POD_KINDS = [
    "Pod",
    "Deployment",
    "StatefulSet",
    "DaemonSet",
    "Job",
    "CronJob",
    "ReplicaSet",
]


def to_admission_response(uid: Optional[str], decision: AdmissionDecision,
                          patch: Optional[List[Dict]] = None) -> Dict:
    """Wrap a decision in an admission.k8s.io/v1 AdmissionReview."""
    response = {
        "uid": uid,
        "allowed": decision.allowed,
    }
    if not decision.allowed:
        response["status"] = {"message": decision.reason}
    if patch:
        response["patchType"] = "JSONPatch"
        response["patch"] = base64.b64encode(json.dumps(patch).encode()).decode()

    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": response,
    }


def build_digest_patch(obj: Dict, digests: Dict[str, str]) -> List[Dict]:
    """JSONPatch operations replacing tag references with repo@digest."""
    prefix, spec = find_pod_spec(obj)
    patch = []
    for field in CONTAINER_FIELDS:
        for index, container in enumerate(spec.get(field) or []):
            image = container.get("image")
            if image not in digests:
                continue
            try:
                parsed = parse_image_reference(image)
            except InvalidImageReference:
                continue
            if parsed.is_digest:
                continue
            patch.append({
                "op": "replace",
                "path": f"{prefix}/{field}/{index}/image",
                "value": parsed.pinned(digests[image]),
            })
    return patch


class AdmissionController:
    """Validating and mutating entry points over one AdmissionEvaluator."""

    def __init__(self, evaluator: AdmissionEvaluator, pin_digests: bool = False):
        self.evaluator = evaluator
        self.pin_digests = pin_digests

    async def _decide(self, request: Dict) -> Optional[AdmissionDecision]:
        kind = request.get("kind", {}).get("kind", "")
        if kind not in POD_KINDS:
            return None
        if request.get("operation") == "DELETE":
            return None

        obj = request.get("object") or {}
        logger.debug(
            "Evaluating {} {}/{} (uid={})",
            kind,
            request.get("namespace", ""),
            obj.get("metadata", {}).get("name", "Unknown"),
            request.get("uid"),
        )
        return await self.evaluator.evaluate_pod(obj)

    async def validate_request(self, admission_review: Dict) -> tuple[bool, Dict]:
        """Validating webhook: allow or deny only."""
        request = admission_review.get("request", {})
        decision = await self._decide(request) or AdmissionDecision.allow()
        return decision.allowed, to_admission_response(request.get("uid"), decision)

    async def mutate_request(self, admission_review: Dict) -> tuple[bool, Dict]:
        """Mutating webhook: same decision, optionally pinning images to digests."""
        request = admission_review.get("request", {})
        decision = await self._decide(request)
        if decision is None:
            return True, to_admission_response(request.get("uid"), AdmissionDecision.allow())

        patch = None
        if decision.allowed and self.pin_digests:
            patch = build_digest_patch(request.get("object") or {}, decision.digests)
        return decision.allowed, to_admission_response(request.get("uid"), decision, patch)
