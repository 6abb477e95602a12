# flowgraph/tracing.py
import logging
from typing import List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Tracer(Protocol):
    """Receives one start and one end event per workflow run."""

    def on_run_start(self, session_id: str, tags: List[str]) -> None:
        ...

    def on_run_end(self, session_id: str, tags: List[str], error: Optional[BaseException] = None) -> None:
        ...


class LoggingTracer:
    def on_run_start(self, session_id: str, tags: List[str]) -> None:
        logger.info(f"run started: {session_id} tags={tags}")

    def on_run_end(self, session_id: str, tags: List[str], error: Optional[BaseException] = None) -> None:
        if error is None:
            logger.info(f"run finished: {session_id}")
        else:
            logger.info(f"run failed: {session_id}: {error}")


def safe_emit(tracer: Optional[Tracer], event: str, *args, **kwargs) -> None:
    """Call a tracer hook; tracer failures are logged and never reach the run."""
    if tracer is None:
        return
    try:
        getattr(tracer, event)(*args, **kwargs)
    except Exception as e:
        logger.warning(f"tracer {type(tracer).__name__}.{event} failed: {e}")
