"""
Node kinds available in graph declarations.
"""

from .leaf import Constant, Learning, PlaceHolder, Variable
from .arithmetic import (
    Absolute,
    Addition,
    Division,
    Exponent,
    Logarithm,
    MatrixMultiplication,
    Multiplication,
    Negative,
    Reshape,
    Select,
    Square,
    SquareRoot,
    Subtraction,
)
from .activation import ActivationFunction, ReLU, Sigmoid, SoftMax, Tanh
from .loss import MeanAbsoluteErrorLoss, MeanSquaredErrorLoss, SoftMaxCrossEntropyLoss
from .layers import FullyConnectedLayer

__all__ = [
    "PlaceHolder",
    "Constant",
    "Variable",
    "Learning",
    "Absolute",
    "Negative",
    "Square",
    "SquareRoot",
    "Exponent",
    "Logarithm",
    "Reshape",
    "Addition",
    "Subtraction",
    "Multiplication",
    "Division",
    "MatrixMultiplication",
    "Select",
    "ActivationFunction",
    "ReLU",
    "Sigmoid",
    "Tanh",
    "SoftMax",
    "MeanSquaredErrorLoss",
    "MeanAbsoluteErrorLoss",
    "SoftMaxCrossEntropyLoss",
    "FullyConnectedLayer",
]
