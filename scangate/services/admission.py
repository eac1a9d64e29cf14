from contextlib import asynccontextmanager
import sys
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from loguru import logger

from scangate.admission.admission_controller import AdmissionController, to_admission_response
from scangate.admission.evaluator import AdmissionEvaluator
from scangate.config import AdmissionConfig
from scangate.models import AdmissionDecision
from scangate.scanner.client import ScanReportClient
from scangate.server import WebServer


class AdmissionServer(WebServer):
    """Async web server for the image scan admission webhook."""

    def __init__(self, config: AdmissionConfig, client: Optional[ScanReportClient] = None):
        self.client = client or ScanReportClient(config.scanner)
        self.controller = AdmissionController(
            AdmissionEvaluator(self.client, timeout=config.admission_timeout),
            pin_digests=config.pin_digests,
        )
        super().__init__(config)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        logger.info(f"Using scanning engine at {self.config.scanner.url}")
        yield
        await self.client.aclose()
        logger.info("Admission webhook shutdown complete")

    def _setup_routes(self):
        """Setup web routes."""
        self.app.add_api_route("/validate", self.validate, methods=["POST"])
        self.app.add_api_route("/mutate", self.mutate, methods=["POST"])
        self.app.add_api_route("/health", self.health, methods=["GET"])

    async def _read_review(self, request: Request) -> dict:
        try:
            admission_review = await request.json()
        except ValueError:
            admission_review = None

        if not isinstance(admission_review, dict) or not isinstance(
            admission_review.get("request"), dict
        ):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid AdmissionReview request",
            )
        return admission_review

    async def validate(self, request: Request):
        admission_review = await self._read_review(request)
        try:
            _, response = await self.controller.validate_request(admission_review)
            return response
        except Exception as e:
            logger.exception(f"Admission validation error: {e}")
            return self._internal_error(admission_review, e)

    async def mutate(self, request: Request):
        admission_review = await self._read_review(request)
        try:
            _, response = await self.controller.mutate_request(admission_review)
            return response
        except Exception as e:
            logger.exception(f"Admission mutation error: {e}")
            return self._internal_error(admission_review, e)

    @staticmethod
    def _internal_error(admission_review: dict, error: Exception) -> dict:
        # Fail closed: an internal error never admits the pod
        return to_admission_response(
            admission_review["request"].get("uid"),
            AdmissionDecision.deny(f"Internal error: {error}"),
        )

    async def health(self):
        return {"status": "healthy"}


def run():
    """Main entry point."""
    try:
        # Load configuration using Pydantic
        config = AdmissionConfig()

        # Setup logging level based on config
        logger.remove()
        logger.add(sys.stderr, level="DEBUG" if config.debug else "INFO")
        if config.debug:
            logger.debug("Debug mode enabled")
            logger.debug("Configuration: {}", config.export_json())

        # Validate required TLS configuration
        if not config.tls_cert_path or not config.tls_key_path:
            logger.warning("TLS certificates not configured, running in insecure mode")

        # Create and run server
        server = AdmissionServer(config)
        server.run()

    except Exception as e:
        logger.exception("Failed to start admission webhook: {}", e)
        raise


if __name__ == "__main__":
    run()
