"""FastAPI dependencies.

The collaborators are built lazily from Settings on first request and
shared for the life of the process. Tests replace them through
`app.dependency_overrides`.
"""

from typing import Optional

from connectors.bling.bling_auth import TokenManager
from connectors.bling.bling_client import BlingApiClient
from core.config import Settings, get_settings
from rps_queue.db import RpsQueueStore
from workflows.factory import build_token_manager, build_workflow
from workflows.rps_workflow import RpsWorkflow


class ServiceContainer:
    """Holds the process-wide pipeline collaborators."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.token_manager = build_token_manager(settings)
        self.queue_store = RpsQueueStore(settings.db_path)
        self.workflow = build_workflow(settings, self.token_manager, self.queue_store)


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = ServiceContainer(get_settings())
    return _container


def get_app_settings() -> Settings:
    return get_settings()


def get_token_manager() -> TokenManager:
    return get_container().token_manager


def get_queue_store() -> RpsQueueStore:
    return get_container().queue_store


def get_workflow() -> RpsWorkflow:
    return get_container().workflow


def get_bling_client() -> BlingApiClient:
    return get_container().workflow.client
