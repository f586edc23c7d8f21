"""HTTP client for the ESG NextGen submission API."""

from __future__ import annotations

import json

import httpx
from pydantic import ValidationError

from esg_pipeline.core.config import settings
from esg_pipeline.core.constants import ErrorCategory
from esg_pipeline.core.logging import get_logger
from esg_pipeline.submission.auth import AuthManager
from esg_pipeline.submission.endpoints import DEMO_HOST, EsgEndpoints
from esg_pipeline.submission.errors import EsgApiError, categorize_http_status
from esg_pipeline.submission.schemas import (
    Acknowledgment,
    CreateSubmissionRequest,
    CreateSubmissionResponse,
    FinalizeResponse,
    UploadResponse,
)
from esg_pipeline.submission.simulator import DemoTransport

logger = get_logger(__name__)

E2B_FILE_TYPE = "E2B_R3_XML"


def build_http_client(
    *,
    demo_transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = settings.ESG_REQUEST_TIMEOUT_SECONDS,
) -> httpx.AsyncClient:
    """
    Shared AsyncClient for token and API calls.

    Requests to the Demo host are answered in-process by the simulated
    gateway; everything else goes over the network.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": settings.ESG_USER_AGENT},
        mounts={f"https://{DEMO_HOST}": demo_transport or DemoTransport()},
    )


class EsgClient:
    """
    Handles authenticated HTTP calls to the ESG gateway.

    Stateless apart from the shared AuthManager.  Every failure surfaces
    as an EsgApiError with a category; nothing here retries.
    """

    def __init__(
        self,
        auth: AuthManager,
        http_client: httpx.AsyncClient,
        *,
        endpoints: EsgEndpoints | None = None,
        timeout: float = settings.ESG_REQUEST_TIMEOUT_SECONDS,
        user_agent: str = settings.ESG_USER_AGENT,
    ) -> None:
        self._auth = auth
        self._http = http_client
        self._endpoints = endpoints or EsgEndpoints.from_settings()
        self._timeout = timeout
        self._user_agent = user_agent

    @property
    def auth(self) -> AuthManager:
        return self._auth

    async def authenticate(self, environment: str) -> None:
        """Make sure a valid token is cached for `environment`."""
        await self._auth.get_token(environment)

    async def create_submission(
        self, environment: str, request: CreateSubmissionRequest
    ) -> CreateSubmissionResponse:
        """Create a new submission record on the gateway."""
        data = await self._request(
            environment, "POST", "/submissions",
            json=request.model_dump(by_alias=True),
        )
        return self._parse(CreateSubmissionResponse, data)

    async def upload_document(
        self, environment: str, submission_id: str, content: str | bytes, filename: str
    ) -> UploadResponse:
        """Upload an E2B(R3) XML document as multipart/form-data."""
        if isinstance(content, str):
            content = content.encode("utf-8")
        data = await self._request(
            environment, "POST", f"/submissions/{submission_id}/files",
            files={"file": (filename, content, "application/xml")},
            data={"fileType": E2B_FILE_TYPE},
        )
        return self._parse(UploadResponse, data)

    async def finalize(self, environment: str, submission_id: str) -> FinalizeResponse:
        """Finalize a submission; the gateway assigns the ESG core id."""
        data = await self._request(environment, "POST", f"/submissions/{submission_id}/finalize")
        return self._parse(FinalizeResponse, data)

    async def get_status(self, environment: str, submission_id: str) -> Acknowledgment | None:
        """Acknowledgment for a submission, or None while none has been issued (404)."""
        return await self._get_acknowledgment(
            environment, f"/submissions/{submission_id}/acknowledgment"
        )

    async def check_acknowledgment(self, environment: str, core_id: str) -> Acknowledgment | None:
        """Acknowledgment looked up by ESG core id, or None while pending."""
        return await self._get_acknowledgment(environment, f"/acknowledgments/{core_id}")

    # ─── Internal ──────────────────────────────────────

    async def _get_acknowledgment(self, environment: str, path: str) -> Acknowledgment | None:
        try:
            data = await self._request(environment, "GET", path)
        except EsgApiError as exc:
            if exc.http_status == 404:
                return None
            raise
        return self._parse(Acknowledgment, data)

    async def _request(self, environment: str, method: str, path: str, **kwargs) -> dict:
        token = await self._auth.get_token(environment)
        url = f"{self._endpoints.base_url(environment)}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }

        try:
            response = await self._http.request(
                method, url, headers=headers, timeout=self._timeout, **kwargs
            )
        except httpx.TimeoutException as exc:
            raise EsgApiError("Request timed out", ErrorCategory.NETWORK) from exc
        except httpx.TransportError as exc:
            raise EsgApiError(f"Network error: {exc}", ErrorCategory.NETWORK) from exc

        if not response.is_success:
            raise self._error_from_response(response)

        logger.debug("ESG API call", method=method, path=path, status=response.status_code)

        if "application/json" not in response.headers.get("content-type", ""):
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise EsgApiError(f"Invalid JSON from ESG API: {exc}", ErrorCategory.UNKNOWN) from exc

    @staticmethod
    def _error_from_response(response: httpx.Response) -> EsgApiError:
        body = response.text
        message = f"ESG API error (HTTP {response.status_code})"
        try:
            parsed = json.loads(body)
        except ValueError:
            if body:
                message = f"{message}: {body[:200]}"
        else:
            if isinstance(parsed, dict):
                if isinstance(parsed.get("message"), str):
                    message = parsed["message"]
                elif isinstance(parsed.get("error"), str):
                    message = parsed["error"]

        return EsgApiError(
            message,
            categorize_http_status(response.status_code),
            http_status=response.status_code,
            response_body=body,
        )

    @staticmethod
    def _parse(model, data):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise EsgApiError(
                f"Unexpected {model.__name__} from ESG API: {exc.error_count()} validation error(s)",
                ErrorCategory.UNKNOWN,
            ) from exc
