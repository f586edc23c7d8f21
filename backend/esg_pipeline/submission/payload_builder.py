"""Build the create-submission request from the configured sender details."""

from __future__ import annotations

from esg_pipeline.core.constants import EsgEnvironment
from esg_pipeline.submission.schemas import CreateSubmissionRequest

DEMO_SENDER = {
    "sender_company_name": "Demo Company Inc.",
    "sender_contact_name": "Demo User",
    "sender_contact_email": "demo@example.com",
}


def build_create_request(environment: str, esg_settings) -> CreateSubmissionRequest:
    """Transform sender settings into the gateway's create-submission body."""
    if environment == EsgEnvironment.DEMO:
        return CreateSubmissionRequest(submission_type="ICSR", **DEMO_SENDER)
    return CreateSubmissionRequest(
        submission_type="ICSR",
        sender_company_name=esg_settings.sender_company_name,
        sender_contact_name=esg_settings.sender_contact_name,
        sender_contact_email=esg_settings.sender_contact_email,
    )
