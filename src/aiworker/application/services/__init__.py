from aiworker.application.services.fallback_coordinator import FallbackCoordinator
from aiworker.application.services.provider_selector import (
    infer_provider_from_model,
    is_privacy_request,
    select_provider,
)
from aiworker.application.services.task_processor import TaskProcessor

__all__ = [
    "FallbackCoordinator",
    "TaskProcessor",
    "infer_provider_from_model",
    "is_privacy_request",
    "select_provider",
]
