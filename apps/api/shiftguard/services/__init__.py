# Business Logic Services
from shiftguard.services.scheduler import (
    get_scheduler,
    run_escalation_sweep,
    start_scheduler,
    stop_scheduler,
)

__all__ = [
    "get_scheduler",
    "run_escalation_sweep",
    "start_scheduler",
    "stop_scheduler",
]
