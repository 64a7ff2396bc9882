"""Domain model: addresses, declaration nodes, expressions and state records."""

from __future__ import annotations

from .address import Address, NodeKind
from .document import DataNode, Document, Lifecycle, Node, Output, ResourceNode, Variable
from .expressions import (
    UNKNOWN,
    Call,
    Expression,
    ListExpression,
    Literal,
    MapExpression,
    Reference,
    ResourceReference,
    Template,
    Unknown,
    VariableReference,
    compile_value,
    evaluate,
    evaluate_map,
    is_known,
    iter_references,
    parse_template,
    stringify,
    traverse,
)
from .functions import FUNCTIONS, FunctionContext
from .state import StateLock, StateRecord, StateSnapshot, utcnow

__all__ = [
    "FUNCTIONS",
    "UNKNOWN",
    "Address",
    "Call",
    "DataNode",
    "Document",
    "Expression",
    "FunctionContext",
    "Lifecycle",
    "ListExpression",
    "Literal",
    "MapExpression",
    "Node",
    "NodeKind",
    "Output",
    "Reference",
    "ResourceNode",
    "ResourceReference",
    "StateLock",
    "StateRecord",
    "StateSnapshot",
    "Template",
    "Unknown",
    "Variable",
    "VariableReference",
    "compile_value",
    "evaluate",
    "evaluate_map",
    "is_known",
    "iter_references",
    "parse_template",
    "stringify",
    "traverse",
    "utcnow",
]
