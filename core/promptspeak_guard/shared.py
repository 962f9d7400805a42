"""Process-wide shared decision engine.

Guards that are not handed an engine explicitly reuse one lazily created
Gatekeeper, so wrapping many tools does not create many engines. Policy
changes made on the shared engine are visible to every guard using it;
pass a dedicated engine to a guard when it needs an isolated policy.
"""

import logging
import threading
from typing import Optional

from promptspeak_guard.gatekeeper.engine import Gatekeeper

logger = logging.getLogger(__name__)

_shared_gatekeeper: Optional[Gatekeeper] = None
_shared_lock = threading.Lock()


def get_shared_gatekeeper() -> Gatekeeper:
    """Return the shared engine, creating it on first use."""
    global _shared_gatekeeper
    with _shared_lock:
        if _shared_gatekeeper is None:
            _shared_gatekeeper = Gatekeeper(enable_periodic_cleanup=False)
            logger.debug("Created shared gatekeeper")
        return _shared_gatekeeper


def reset_shared_gatekeeper() -> None:
    """Tear down the shared engine so the next use creates a fresh one."""
    global _shared_gatekeeper
    with _shared_lock:
        gatekeeper = _shared_gatekeeper
        _shared_gatekeeper = None
    if gatekeeper is not None:
        gatekeeper.stop_periodic_cleanup()
        logger.debug("Reset shared gatekeeper")
