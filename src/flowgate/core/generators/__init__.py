"""Phase content generators.

Use get_generator() to obtain the generator configured for the service.
"""

from typing import Optional

from flowgate.core.generators.base import (
    OUTPUT_TYPES,
    Generator,
    PhaseOutput,
    RefinementOutput,
    TechnicalPlanOutput,
    UserStoryOutput,
)
from flowgate.core.generators.command import CommandGenerator


def get_generator(command: Optional[str], timeout: int = 600) -> Generator:
    """Build the generator for a configured command.

    Raises:
        ValueError: If no generator command is configured
    """
    if not command:
        raise ValueError(
            "No generator configured. Set FLOWGATE_GENERATOR_COMMAND to the "
            "command that produces phase content."
        )
    return CommandGenerator(command, timeout=timeout)


__all__ = [
    "CommandGenerator",
    "Generator",
    "OUTPUT_TYPES",
    "PhaseOutput",
    "RefinementOutput",
    "TechnicalPlanOutput",
    "UserStoryOutput",
    "get_generator",
]
