from __future__ import annotations

import asyncio

from pagedigest.pipeline import Run, RunObserver, RunResult

from .repository import RunRepository


class RunRecorder(RunObserver):
    """Persists every settled run (including suspended ones)."""

    def __init__(self, repository: RunRepository):
        self.repository = repository

    async def on_run_finished(self, run: Run, result: RunResult) -> None:
        await asyncio.to_thread(self.repository.save, run)
