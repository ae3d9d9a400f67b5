"""Graph package - the flow graph engine.

Nodes and edges of a questionnaire flow, the command facade that keeps them
consistent, and the engines it drives: path identifiers, validation, layout
and undo history.
"""

from questionflow.graph.errors import (
    DocumentFormatError,
    EdgeNotFoundError,
    FlowGraphError,
    ImportConflict,
    NodeExistsError,
    NodeNotFoundError,
    OrphanedHandleError,
    RejectionReason,
    ValidationRejected,
)
from questionflow.graph.graph import Clipboard, FlowChange, FlowGraph, MutationResult
from questionflow.graph.handles import (
    DEFAULT_HANDLE,
    Combination,
    combination_handle,
    generate_combinations,
    variant_handle,
)
from questionflow.graph.history import HistoryManager
from questionflow.graph.layout import LayoutOptions, compute_layout
from questionflow.graph.models import (
    AnswerMode,
    AnswerNode,
    Edge,
    Node,
    OutcomeNode,
    Position,
    QuestionNode,
    Variant,
)
from questionflow.graph.orphans import NodeFlags
from questionflow.graph.path_ids import PathIdGenerator, PathIdResult
from questionflow.graph.store import DictFlowStore, FlowSnapshot, FlowStore
from questionflow.graph.validation import can_add_edge, check_invariants
from questionflow.graph.validation_types import ValidationCheck, ValidationReport

__all__ = [
    "DEFAULT_HANDLE",
    "AnswerMode",
    "AnswerNode",
    "Clipboard",
    "Combination",
    "DictFlowStore",
    "DocumentFormatError",
    "Edge",
    "EdgeNotFoundError",
    "FlowChange",
    "FlowGraph",
    "FlowGraphError",
    "FlowSnapshot",
    "FlowStore",
    "HistoryManager",
    "ImportConflict",
    "LayoutOptions",
    "MutationResult",
    "Node",
    "NodeExistsError",
    "NodeFlags",
    "NodeNotFoundError",
    "OrphanedHandleError",
    "OutcomeNode",
    "PathIdGenerator",
    "PathIdResult",
    "Position",
    "QuestionNode",
    "RejectionReason",
    "ValidationCheck",
    "ValidationRejected",
    "ValidationReport",
    "Variant",
    "can_add_edge",
    "check_invariants",
    "combination_handle",
    "compute_layout",
    "generate_combinations",
    "variant_handle",
]
