"""Generator that delegates to an external command.

The command receives the request as JSON on stdin:

    {"phase": "refinement", "ticket": {...}, "context": {...}}

and must print a JSON object on stdout with at least a ``content`` string,
plus the optional fields of the phase output model. The JSON may be wrapped
in Markdown fences or surrounded by prose.
"""

import json
import logging
import os
import shlex
import subprocess
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from flowgate.core.errors import GenerationError
from flowgate.core.generators.base import OUTPUT_TYPES, Generator, PhaseOutput
from flowgate.core.json_parser import parse_json_object
from flowgate.core.models import Ticket
from flowgate.core.workflow.taxonomy import Phase

logger = logging.getLogger(__name__)


def get_generator_env() -> Dict[str, str]:
    """Environment passed to the generator command.

    Only the variables a generator needs are forwarded; database and tracker
    credentials stay in the service process.
    """
    env = {
        "HOME": os.getenv("HOME"),
        "USER": os.getenv("USER"),
        "PATH": os.getenv("PATH"),
        "SHELL": os.getenv("SHELL"),
        "LANG": os.getenv("LANG"),
        "ANTHROPIC_API_KEY": os.getenv("ANTHROPIC_API_KEY"),
        "OPENAI_API_KEY": os.getenv("OPENAI_API_KEY"),
    }
    return {k: v for k, v in env.items() if v is not None}


class CommandGenerator(Generator):
    """Runs a configured command once per phase execution."""

    def __init__(self, command: str, timeout: int = 600) -> None:
        args = shlex.split(command)
        if not args:
            raise ValueError("command cannot be empty")
        self.args: List[str] = args
        self.timeout = timeout

    def _build_request(self, phase: Phase, ticket: Ticket, context: Dict[str, Any]) -> str:
        return json.dumps(
            {
                "phase": phase.value,
                "ticket": ticket.model_dump(mode="json"),
                "context": context,
            }
        )

    def generate(
        self, phase: Phase, ticket: Ticket, context: Optional[Dict[str, Any]] = None
    ) -> PhaseOutput:
        request = self._build_request(phase, ticket, context or {})
        logger.debug(
            "Running generator %s for %s (%s)", self.args[0], ticket.external_id, phase.value
        )

        try:
            result = subprocess.run(
                self.args,
                input=request,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=get_generator_env(),
            )
        except subprocess.TimeoutExpired as e:
            raise GenerationError(
                f"Generator timed out after {self.timeout}s for {phase.value}"
            ) from e
        except OSError as e:
            raise GenerationError(f"Generator could not be started: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise GenerationError(
                f"Generator exited with code {result.returncode}: {stderr[:500]}"
            )

        parsed = parse_json_object(result.stdout, {"content": str}, logger, source=phase.value)
        if not parsed.success or parsed.data is None:
            raise GenerationError(parsed.error or "Generator returned no output")

        try:
            return OUTPUT_TYPES[phase].model_validate(parsed.data)
        except ValidationError as e:
            raise GenerationError(f"Invalid {phase.value} output: {e}") from e
