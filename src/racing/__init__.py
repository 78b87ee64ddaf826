"""Race relay core: sessions, AI cars and position sync."""
from .ai import AISimulationEngine
from .broadcast import BroadcastProtocol, Transport
from .lifecycle import SessionLifecycleManager, SessionRegistry
from .messages import MessageError, parse_client_message, parse_server_message
from .models import AIState, FinishRecord, ParticipantState, Session, SessionStatus
from .timers import AsyncioScheduler, Scheduler, SessionTimers

__all__ = [
    "AISimulationEngine",
    "AIState",
    "AsyncioScheduler",
    "BroadcastProtocol",
    "FinishRecord",
    "MessageError",
    "ParticipantState",
    "Scheduler",
    "Session",
    "SessionLifecycleManager",
    "SessionRegistry",
    "SessionStatus",
    "SessionTimers",
    "Transport",
    "parse_client_message",
    "parse_server_message",
]
