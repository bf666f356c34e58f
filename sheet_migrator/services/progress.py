from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display service with tqdm (TTY only).

- Single tqdm instance per run (disabled in non-TTY so CI logs stay clean)
- One step per entity per stage (extract / transform / load)
- TTY detection using sys.stdout.isatty()
"""

__all__ = [
    "STAGES",
    "ProgressTracker",
    "is_tty_enabled",
]

STAGES = ("extract", "transform", "load")


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress tracker over (entity, stage) steps.

    In non-TTY environments the bar is never created; the step counters are
    still maintained so callers can inspect them.
    """

    def __init__(self, entities: list[str], *, description: str = "Migrating") -> None:
        self.entities = list(entities)
        self.description = description
        self.total_steps = len(self.entities) * len(STAGES)
        self.completed_steps = 0
        self.current: tuple[str, str] | None = None

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=self.total_steps,
                desc=description,
                unit="step",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def start(self, entity: str, stage: str) -> None:
        self.current = (entity, stage)
        if self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({stage} {entity})")

    def finish(self, **postfix: Any) -> None:
        """Mark the current step done; postfix values are shown beside the bar."""
        self.completed_steps += 1
        self.current = None
        if self.pbar is not None:
            if postfix:
                self.pbar.set_postfix(**postfix)
            self.pbar.update(1)
            self.pbar.set_description(self.description)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
