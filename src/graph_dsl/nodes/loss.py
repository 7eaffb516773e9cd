"""
Loss nodes. Each reduces over axis 0, keeping the dimension, so a batch of
per-sample losses becomes one averaged loss.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

import torch

from graph_dsl.backend.base import TensorHandle
from graph_dsl.errors import InputShapeError
from graph_dsl.graph.node import BinaryNode

if TYPE_CHECKING:
    from graph_dsl.graph.builder import GraphBuilder


def _mean_squared_error(actual: torch.Tensor, predicted: torch.Tensor) -> torch.Tensor:
    return torch.square(predicted - actual).mean(dim=0, keepdim=True)


def _mean_absolute_error(actual: torch.Tensor, predicted: torch.Tensor) -> torch.Tensor:
    return torch.abs(predicted - actual).mean(dim=0, keepdim=True)


def _softmax_cross_entropy(labels: torch.Tensor, logits: torch.Tensor) -> torch.Tensor:
    per_sample = -(labels * torch.log_softmax(logits, dim=-1)).sum(dim=-1, keepdim=True)
    return per_sample.mean(dim=0, keepdim=True)


class LossNode(BinaryNode):
    def __init__(
        self,
        actual: Optional[str] = None,
        predicted: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(actual, predicted, name)

    @staticmethod
    def fn(actual: torch.Tensor, predicted: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def emit(self, builder: "GraphBuilder") -> List[Optional[TensorHandle]]:
        actual = builder.input(self.first_input)
        predicted = builder.input(self.second_input)
        if actual.shape is not None and predicted.shape is not None and actual.shape != predicted.shape:
            raise InputShapeError(
                f"{type(self).__name__}: expected shape {actual.shape} differs from predicted {predicted.shape}."
            )
        return [
            builder.backend.emit(self.op, [actual, predicted], type(self).fn, name=builder.full_name(self.name))
        ]


class MeanSquaredErrorLoss(LossNode):
    op = "meanSquaredErrorLoss"
    fn = staticmethod(_mean_squared_error)


class MeanAbsoluteErrorLoss(LossNode):
    op = "meanAbsoluteErrorLoss"
    fn = staticmethod(_mean_absolute_error)


class SoftMaxCrossEntropyLoss(LossNode):
    """``actual`` holds one-hot (or probability) labels, ``predicted`` the logits."""

    op = "softMaxCrossEntropyLoss"
    fn = staticmethod(_softmax_cross_entropy)
