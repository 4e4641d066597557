"""Wiring of the pipeline collaborators from Settings."""

from typing import Optional

from connectors.bling.bling_auth import BlingOAuthConfig, TokenManager
from connectors.bling.bling_client import BlingApiClient
from contact_resolver.resolver import ContactDefaults, ContactResolver
from core.config import Settings
from core.security import CredentialStore, SqliteCredentialStore, TokenEncryption
from core.workflow import ThrottledPipeline
from nfse.eligibility import ServiceLineFilter
from nfse.emitter import EmitterConfig, InvoiceEmitter
from reconciliation.status_sync import StatusReconciler
from rps_queue.db import RpsQueueStore
from workflows.rps_workflow import RpsWorkflow


def build_token_manager(settings: Settings, store: Optional[CredentialStore] = None) -> TokenManager:
    if store is None:
        encryption = TokenEncryption(settings.token_encryption_key) if settings.token_encryption_key else None
        store = SqliteCredentialStore(settings.db_path, encryption=encryption)
    return TokenManager(
        BlingOAuthConfig.from_settings(settings),
        store,
        user_id=settings.user_id,
    )


def build_workflow(
    settings: Settings,
    token_manager: Optional[TokenManager] = None,
    queue_store: Optional[RpsQueueStore] = None,
) -> RpsWorkflow:
    """Assemble an RpsWorkflow with every collaborator configured from settings."""
    token_manager = token_manager or build_token_manager(settings)
    queue_store = queue_store or RpsQueueStore(settings.db_path)
    client = BlingApiClient(token_manager, settings.api_base_url)

    return RpsWorkflow(
        client=client,
        token_manager=token_manager,
        store=queue_store,
        contact_resolver=ContactResolver(
            client,
            ContactDefaults(city=settings.default_city, state=settings.default_state),
        ),
        line_filter=ServiceLineFilter(client, cancelled_situation=settings.cancelled_situation),
        emitter=InvoiceEmitter(
            client,
            EmitterConfig(
                service_code=settings.service_code,
                series=settings.series,
                payment_method_id=settings.payment_method_id,
            ),
        ),
        reconciler=StatusReconciler(
            client,
            queue_store,
            pipeline=ThrottledPipeline(delay_seconds=settings.sync_item_delay),
        ),
        pipeline=ThrottledPipeline(delay_seconds=settings.batch_item_delay),
    )
