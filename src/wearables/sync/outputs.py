"""Where run results go: the console, or GitHub Actions step outputs.

The sink is chosen once at startup (``create_output_sink``) instead of each
call site checking for the Actions environment.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

from src.config import Settings

logger = logging.getLogger("whoop_sync.outputs")


class OutputSink(ABC):
    """Receives named key/value results and the final failure signal."""

    @abstractmethod
    def set_output(self, name: str, value: object) -> None:
        ...

    @abstractmethod
    def set_failed(self, message: str) -> None:
        ...


class ConsoleOutputSink(OutputSink):
    """Logs outputs; used when running standalone."""

    def __init__(self) -> None:
        self.outputs: dict[str, str] = {}

    def set_output(self, name: str, value: object) -> None:
        self.outputs[name] = str(value)
        logger.info("Output: %s=%s", name, value)

    def set_failed(self, message: str) -> None:
        logger.error("[FAILED] %s", message)


class GitHubOutputSink(OutputSink):
    """Appends outputs to the ``$GITHUB_OUTPUT`` file of a GitHub Actions step.

    Multi-line values use the heredoc form::

        name<<ghadelimiter_<uuid>
        line 1
        line 2
        ghadelimiter_<uuid>
    """

    def __init__(self, output_file: str | Path) -> None:
        self.output_file = Path(output_file)

    def set_output(self, name: str, value: object) -> None:
        text = str(value)
        if "\n" in text:
            delimiter = f"ghadelimiter_{uuid.uuid4()}"
            entry = f"{name}<<{delimiter}\n{text}\n{delimiter}\n"
        else:
            entry = f"{name}={text}\n"
        with self.output_file.open("a", encoding="utf-8") as fh:
            fh.write(entry)
        logger.debug("Wrote output %s", name)

    def set_failed(self, message: str) -> None:
        # Workflow command: shows up as an error annotation on the run.
        print(f"::error::{message}", flush=True)


def create_output_sink(settings: Settings) -> OutputSink:
    if settings.github_output:
        return GitHubOutputSink(settings.github_output)
    return ConsoleOutputSink()
