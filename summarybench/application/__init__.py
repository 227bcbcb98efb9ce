"""Application services."""

from .generation import (
    GenerationService,
    build_generation_service,
    configure_generation_service,
    get_generation_service,
    reset_generation_state,
)

__all__ = [
    "GenerationService",
    "build_generation_service",
    "configure_generation_service",
    "get_generation_service",
    "reset_generation_state",
]
