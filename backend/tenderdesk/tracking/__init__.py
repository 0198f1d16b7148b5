"""Tender tracking pipeline: stages, service, drag-and-drop and kanban board."""

from .dragdrop import DragDropController
from .kanban import KanbanBoard, apply_move, classify_priority, filter_grouped
from .models import GroupedTenders, Stage, TrackedTender
from .service import TenderTrackingService

__all__ = [
    "DragDropController",
    "GroupedTenders",
    "KanbanBoard",
    "Stage",
    "TenderTrackingService",
    "TrackedTender",
    "apply_move",
    "classify_priority",
    "filter_grouped",
]
