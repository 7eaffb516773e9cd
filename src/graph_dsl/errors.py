"""
Exception hierarchy for graph construction, execution and persistence.

Every error raised by graph-dsl derives from ``GraphDSLError``. Structural
problems additionally derive from ``ValueError`` (or ``KeyError`` for failed
name lookups) so callers treating them as plain Python errors keep working.
"""

from __future__ import annotations

from typing import Optional


class GraphDSLError(Exception):
    """Base class for all graph-dsl errors."""


class _NamedError(GraphDSLError):
    """Error carrying the offending node, slot or variable name."""

    message = "{name}"

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name
        super().__init__(self.message.format(name=name))

    def __str__(self) -> str:
        return self.args[0] if self.args else ""


# ---------------------------------------------------------------------------
# Build-time errors
# ---------------------------------------------------------------------------


class GraphBuildError(GraphDSLError, ValueError):
    """A node list could not be turned into a graph."""


class NamedTensorNotFoundError(_NamedError, GraphBuildError, KeyError):
    message = "No node named `{name}` is visible from the current scope."


class NoPreviousNodeError(GraphBuildError):
    def __init__(self) -> None:
        super().__init__("Input omitted but no node has been emitted yet.")


class NameNotUniqueError(_NamedError, GraphBuildError):
    message = "Node name `{name}` is already used in the graph."


class UnknownShapeError(GraphBuildError):
    def __init__(self, op: str = "") -> None:
        self.op = op
        super().__init__(f"Backend could not report a shape for `{op}` output.")


class UnreferencedNodeError(GraphBuildError):
    """A declared node is neither consumed by another node nor a target."""

    def __init__(self, description: str) -> None:
        self.description = description
        super().__init__(f"Unreferenced node: {description}")


class NoTargetsInGraphError(GraphBuildError):
    def __init__(self, message: str = "The graph must contain at least one target node.") -> None:
        super().__init__(message)


class MoreThanOneLearningNodeError(GraphBuildError):
    def __init__(self) -> None:
        super().__init__("Only one Learning node is allowed per graph.")


class TargetNodesMustBeNamedError(GraphBuildError):
    def __init__(self) -> None:
        super().__init__("All nodes designated as targets must have a name.")


class VariableLearningNodeMustBeNamedError(GraphBuildError):
    def __init__(self) -> None:
        super().__init__("A Learning node with a runtime learning rate must be named.")


class VariableMustBeNamedError(GraphBuildError):
    def __init__(self) -> None:
        super().__init__("Learnable variables and variables in load/reset graphs must be named.")


class LossNotTargetError(_NamedError, GraphBuildError):
    message = "Loss node `{name}` must be designated as a target."


class NodeCannotBeTargetError(GraphBuildError):
    def __init__(self, what: str = "node") -> None:
        super().__init__(f"The {what} cannot be designated as a target.")


class NoConfiguredTargetTensorsError(GraphBuildError):
    def __init__(self, name: Optional[str]) -> None:
        self.name = name
        super().__init__(f"Node `{name}` is a target but exposes no targetable outputs.")


class SubGraphPlaceHolderNotInInputMapError(_NamedError, GraphBuildError, KeyError):
    message = "Subgraph placeholder `{name}` has no entry in the subgraph input map."


class ReferencedDataTensorNotFoundError(_NamedError, GraphBuildError, KeyError):
    message = "Data tensor `{name}` not found in the current subgraph data tensor map."


class InputShapeError(GraphBuildError):
    """Input shapes are incompatible with the requested operation."""


class NoLearningVariablesInGraphError(GraphBuildError):
    def __init__(self) -> None:
        super().__init__("There are no learnable variables in the graph.")


# ---------------------------------------------------------------------------
# Run-time errors
# ---------------------------------------------------------------------------


class GraphRunError(GraphDSLError):
    """A run, encode or bulk operation could not be performed."""


class PlaceHolderInputNotFoundError(_NamedError, GraphRunError, KeyError):
    message = "No input tensor supplied for placeholder `{name}`."


class NoTargetsForModeError(NoTargetsInGraphError, GraphRunError):
    def __init__(self, mode: str) -> None:
        self.mode = mode
        super().__init__(f"No targets declared for mode `{mode}`.")


class FeedShapeMismatchError(GraphRunError, ValueError):
    def __init__(self, name: Optional[str], expected: tuple, received: tuple) -> None:
        self.name = name
        self.expected = expected
        self.received = received
        super().__init__(f"Input `{name}` expects shape {expected}, received {received}.")


class ResultTensorNotFoundError(_NamedError, GraphRunError, KeyError):
    message = "Result tensor `{name}` was not in the run results."


class GraphNotBuiltForOperationError(GraphRunError):
    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"The graph was not built with the options required for: {operation}")


class BatchInputMismatchError(GraphRunError, ValueError):
    """Some, but not all, batchable inputs were supplied with a batch dimension."""


class SampleCountNotBatchMultipleError(GraphRunError, ValueError):
    def __init__(self, count: int, batch_size: int) -> None:
        self.count = count
        self.batch_size = batch_size
        super().__init__(f"Sample count {count} is not a multiple of the batch size {batch_size}.")


class NotABatchTensorError(GraphRunError, ValueError):
    def __init__(self) -> None:
        super().__init__("Tensor does not have enough dimensions to be a batch tensor.")


class SampleDoesntMatchBatchShapeError(GraphRunError, ValueError):
    def __init__(self) -> None:
        super().__init__("Sample shape does not match the batch tensor shape.")


# ---------------------------------------------------------------------------
# Persistence errors
# ---------------------------------------------------------------------------


class PersistenceError(GraphDSLError):
    """Saved variable data could not be produced or consumed."""


class UnexpectedDataReadError(PersistenceError, ValueError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(f"Malformed or truncated variable data. {detail}".strip())


class SavedCountMismatchError(PersistenceError, ValueError):
    def __init__(self, saved: int, expected: int) -> None:
        self.saved = saved
        self.expected = expected
        super().__init__(
            f"Saved data holds {saved} variables but the graph has {expected} learning variables."
        )


class SavedVariableNotFoundInLoadListError(_NamedError, PersistenceError, KeyError):
    message = "Saved variable `{name}` is not in the graph's load list."


# ---------------------------------------------------------------------------
# Data collaborators
# ---------------------------------------------------------------------------


class TensorError(GraphDSLError, ValueError):
    """Invalid tensor access or construction."""


class DataSetError(GraphDSLError, ValueError):
    """Invalid dataset access or construction."""


class SampleShapeMismatchError(DataSetError):
    pass


class SampleTypeMismatchError(DataSetError):
    pass


class DataSetLockedError(DataSetError):
    def __init__(self) -> None:
        super().__init__("DataSet is locked by another bulk operation.")


