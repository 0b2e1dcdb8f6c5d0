"""Process introspection endpoints mounted under /debug/pprof when enabled."""

from __future__ import annotations

import gc
import sys
import threading
import traceback
import tracemalloc

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse

PROFILES = {
    "threads": "Stack traces of all live threads",
    "heap": "Top allocation sites and garbage collector counters",
    "cmdline": "Command line of the running process",
}


def build_router() -> APIRouter:
    """Return the profiling router, starting allocation tracing if needed."""

    if not tracemalloc.is_tracing():
        tracemalloc.start()

    router = APIRouter()

    @router.get("/", response_class=PlainTextResponse)
    def index() -> str:
        lines = ["Available profiles:"]
        lines.extend(f"  {name}: {description}" for name, description in PROFILES.items())
        return "\n".join(lines) + "\n"

    @router.get("/threads", response_class=PlainTextResponse)
    def threads() -> str:
        names = {thread.ident: thread.name for thread in threading.enumerate()}
        chunks = []
        for ident, frame in sys._current_frames().items():
            header = f"thread {ident} [{names.get(ident, 'unknown')}]:\n"
            chunks.append(header + "".join(traceback.format_stack(frame)))
        return "\n".join(chunks)

    @router.get("/heap", response_class=PlainTextResponse)
    def heap(limit: int = Query(default=25, ge=1, le=500)) -> str:
        current, peak = tracemalloc.get_traced_memory()
        lines = [
            f"traced_current_bytes: {current}",
            f"traced_peak_bytes: {peak}",
            f"gc_counts: {gc.get_count()}",
            "",
        ]
        stats = tracemalloc.take_snapshot().statistics("lineno")
        lines.extend(str(stat) for stat in stats[:limit])
        return "\n".join(lines) + "\n"

    @router.get("/cmdline", response_class=PlainTextResponse)
    def cmdline() -> str:
        return "\x00".join([sys.executable, *sys.argv])

    return router
