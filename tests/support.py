"""Test doubles shared across the suite."""

import asyncio

from seneca.v1.workers.analytics import ErrorReporter


class StubProcessor:
    """
    Scriptable enrichment collaborator.

    Memories listed in `failures` raise, those in `hangs` never return, and
    every call sleeps for `delay` seconds first.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.failures: dict[str, Exception] = {}
        self.hangs: set[str] = set()
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def process(self, memory_id: str) -> None:
        self.calls.append(memory_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if memory_id in self.hangs:
                await asyncio.Event().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if memory_id in self.failures:
                raise self.failures[memory_id]
        finally:
            self.active -= 1


class RecordingAnalytics:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.successes = []
        self.failures = []

    async def record_success(self, outcome) -> None:
        if self.fail:
            raise RuntimeError("analytics store unavailable")
        self.successes.append(outcome)

    async def record_failure(self, outcome) -> None:
        if self.fail:
            raise RuntimeError("analytics store unavailable")
        self.failures.append(outcome)


class RecordingReporter(ErrorReporter):
    def __init__(self):
        self.reported: list[tuple[BaseException, dict]] = []

    def report(self, error: BaseException, **context) -> None:
        self.reported.append((error, context))
        super().report(error, **context)
