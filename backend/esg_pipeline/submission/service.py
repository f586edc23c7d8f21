"""
Wiring for the submission pipeline.

One `SubmissionServices` per event loop: the API builds it in its lifespan,
each Celery task builds its own around `asyncio.run`.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from esg_pipeline.core.events import event_bus
from esg_pipeline.submission.auth import AuthManager
from esg_pipeline.submission.coordinator import SubmissionCoordinator
from esg_pipeline.submission.credentials import SettingsCredentialStore
from esg_pipeline.submission.documents import FileDocumentGenerator
from esg_pipeline.submission.endpoints import EsgEndpoints
from esg_pipeline.submission.esg_client import EsgClient, build_http_client
from esg_pipeline.submission.poller import AcknowledgmentPoller
from esg_pipeline.submission.settings import DatabaseSettingsProvider
from esg_pipeline.submission.simulator import DemoTransport
from esg_pipeline.submission.store import SqlSubmissionStore
from esg_pipeline.submission.workflow import CaseWorkflow


@dataclass
class SubmissionServices:
    http_client: httpx.AsyncClient
    simulator: DemoTransport
    credential_store: SettingsCredentialStore
    auth: AuthManager
    client: EsgClient
    settings_provider: DatabaseSettingsProvider
    store: SqlSubmissionStore
    workflow: CaseWorkflow
    coordinator: SubmissionCoordinator
    poller: AcknowledgmentPoller

    async def aclose(self) -> None:
        await self.poller.stop()
        await self.http_client.aclose()


def build_services(
    session_factory,
    *,
    publisher=event_bus,
    credential_store=None,
    documents=None,
    simulator: DemoTransport | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SubmissionServices:
    simulator = simulator or DemoTransport()
    http_client = http_client or build_http_client(demo_transport=simulator)
    endpoints = EsgEndpoints.from_settings()

    credential_store = credential_store or SettingsCredentialStore()
    auth = AuthManager(credential_store, http_client, endpoints=endpoints)
    client = EsgClient(auth, http_client, endpoints=endpoints)
    settings_provider = DatabaseSettingsProvider(session_factory)
    store = SqlSubmissionStore(session_factory)
    workflow = CaseWorkflow(session_factory)

    coordinator = SubmissionCoordinator(
        client,
        store=store,
        workflow=workflow,
        documents=documents or FileDocumentGenerator(),
        settings_provider=settings_provider,
        publisher=publisher,
        simulator=simulator,
    )
    poller = AcknowledgmentPoller(
        client,
        store=store,
        workflow=workflow,
        settings_provider=settings_provider,
        publisher=publisher,
    )

    return SubmissionServices(
        http_client=http_client,
        simulator=simulator,
        credential_store=credential_store,
        auth=auth,
        client=client,
        settings_provider=settings_provider,
        store=store,
        workflow=workflow,
        coordinator=coordinator,
        poller=poller,
    )
