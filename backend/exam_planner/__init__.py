"""Study-plan scheduling and rescheduling engine."""

from .allocator import StudyAllocator, allocate
from .buffer_planner import BufferPlanner, apply_buffer
from .models import CompletionEvent, Constraints, Plan, ProgressReport, Session, Topic, TopicCatalog
from .progress import ProgressAggregator, report
from .repair_engine import RepairEngine, RepairResult

__all__ = [
    "BufferPlanner",
    "CompletionEvent",
    "Constraints",
    "Plan",
    "ProgressAggregator",
    "ProgressReport",
    "RepairEngine",
    "RepairResult",
    "Session",
    "StudyAllocator",
    "Topic",
    "TopicCatalog",
    "allocate",
    "apply_buffer",
    "report",
]
