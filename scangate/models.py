"""Data shapes exchanged with the scanning engine and the webhook layer."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ImageRecord(BaseModel):
    """One entry of the engine's image index (``GET /images``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    image_digest: str = Field(alias="imageDigest")


class ScanReport(BaseModel):
    """Latest policy evaluation of one (digest, tag) pair."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    digest: str = ""
    tag: str = ""
    status: str
    detail: Any = None
    last_evaluation: Optional[str] = None
    policy_id: Optional[str] = Field(default=None, alias="policyId")

    @property
    def passed(self) -> bool:
        return self.status.lower() == "pass"


class AdmissionDecision(BaseModel):
    """Allow/deny outcome for all images of one pod."""

    allowed: bool
    reason: Optional[str] = None
    digests: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def allow(cls, digests: Optional[Dict[str, str]] = None) -> "AdmissionDecision":
        return cls(allowed=True, digests=digests or {})

    @classmethod
    def deny(cls, reason: str, digests: Optional[Dict[str, str]] = None) -> "AdmissionDecision":
        return cls(allowed=False, reason=reason, digests=digests or {})
