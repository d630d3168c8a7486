"""
Tissue Monitoring - health context and rotating event log.

Two monitoring layers:

1. ``health_context()`` - one-line string describing a brain's state
   (e.g. "Brain: 600 neurons, 1,000 synapses, step 42, 17 pending").
2. ``TissueEventLogger`` - rotating JSON-lines file logger subscribed to a
   brain's ``step``, ``grew``, ``rewired`` and ``ignited`` events.

Usage::

    from tissue_monitoring import TissueEventLogger, health_context
    events = TissueEventLogger("~/.neurotissue/logs")
    events.attach(brain)
    brain.process(10)
    print(health_context(brain))
    events.close()
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from tissue_foundation import Brain, StepResult

logger = logging.getLogger("neurotissue.monitoring")

_EVENT_TYPES = ("step", "grew", "rewired", "ignited")


# -- Health context ---------------------------------------------------------


def health_context(brain: Brain) -> str:
    """Human-readable one-line summary of a brain."""
    stats = brain.activity_stats()
    parts = [
        f"Brain: {stats.neurons:,} neurons",
        f"{stats.synapses:,} synapses",
        f"step {stats.step:,}",
    ]
    if stats.pending_arrivals:
        parts.append(f"{stats.pending_arrivals:,} pending")
    if stats.fired_last_step:
        parts.append(f"{stats.fired_last_step:,} fired last step")
    if stats.neurons_grown or stats.synapses_rewired:
        parts.append(f"{stats.neurons_grown} grown / {stats.synapses_rewired} rewired")
    return ", ".join(parts)


# -- Rotating event log -----------------------------------------------------


class TissueEventLogger:
    """Rotating file logger for brain events.

    Writes structured JSON-line events to ``tissue.log`` with automatic
    rotation based on file size.

    Args:
        log_dir: Directory for ``tissue.log`` (created if missing).
        max_log_size_mb: Size at which the log rotates.
        backup_count: Rotated files kept.
    """

    def __init__(
        self,
        log_dir: str,
        max_log_size_mb: int = 10,
        backup_count: int = 3,
    ) -> None:
        self._logger = logging.getLogger("neurotissue.events")
        self._handler: Optional[logging.Handler] = None
        self._subscriptions: List[Tuple[Brain, str, Callable[..., None]]] = []
        self.log_path = Path(log_dir).expanduser() / "tissue.log"
        self._setup_handler(max_log_size_mb, backup_count)

    def _setup_handler(self, max_log_size_mb: int, backup_count: int) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            str(self.log_path),
            maxBytes=max_log_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)
        self._handler = handler

    def log_event(self, event_type: str, data: Dict[str, Any], step: Optional[int] = None) -> None:
        """Write a structured event to the log.

        ``step`` is the brain step the event belongs to; None for events
        not tied to a brain.
        """
        event = {
            "timestamp": time.time(),
            "step": step,
            "event": event_type,
            "data": data,
        }
        self._logger.info(json.dumps(event, default=str))

    def attach(self, brain: Brain) -> None:
        """Log every event the brain emits until ``close``."""
        for event_type in _EVENT_TYPES:
            callback = self._handler_for(brain, event_type)
            brain.register_event_handler(event_type, callback)
            self._subscriptions.append((brain, event_type, callback))
        logger.debug("Event logger attached to %r", brain)

    def _handler_for(self, brain: Brain, event_type: str) -> Callable[..., None]:
        def handle(**kwargs: Any) -> None:
            result = kwargs.pop("result", None)
            if isinstance(result, StepResult):
                self.log_event(event_type, {
                    "fired": len(result.fired_neuron_ids),
                    "delivered": result.arrivals_delivered,
                    "grown": result.neurons_grown,
                    "rewired": result.synapses_rewired,
                    "pending": brain.pending_count(),
                }, step=result.step)
                return
            kwargs["neurons"] = len(brain.neurons)
            kwargs["synapses"] = brain.synapse_count()
            self.log_event(event_type, kwargs, step=brain.timestep)

        return handle

    def close(self) -> None:
        """Unsubscribe from every attached brain and close the file handler."""
        for brain, event_type, callback in self._subscriptions:
            brain.unregister_event_handler(event_type, callback)
        self._subscriptions = []
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
