"""Pluggable evaluation of decision node conditions."""

import ast
import random
from typing import Any, Dict, Mapping, Optional

from .logging import get_logger

logger = get_logger(__name__)


class ConditionEvaluator:
    """Turns a decision node's condition text into a boolean."""

    def evaluate(self, condition: str, variables: Mapping[str, Any]) -> bool:
        raise NotImplementedError


class RandomConditionEvaluator(ConditionEvaluator):
    """Uniform true/false, ignoring the condition text.

    Matches the behaviour of the hosted editor, where decisions are simulated.
    Pass a seed for reproducible runs.
    """

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def evaluate(self, condition: str, variables: Mapping[str, Any]) -> bool:
        return self._random.random() >= 0.5


class UnsafeExpressionError(ValueError):
    """Raised when a condition uses syntax outside the allowed subset."""


class ExpressionConditionEvaluator(ConditionEvaluator):
    """Evaluates the condition as a restricted Python expression.

    The expression sees the run variables (``outcomes`` and ``branches`` of
    the nodes that already ran) plus a handful of safe builtins. It is parsed
    first and only a small set of node types is accepted: no attribute
    access, comprehensions or lambdas, and calls only to the safe builtins.
    A blank, broken or disallowed expression evaluates to False.
    """

    SAFE_BUILTINS: Dict[str, Any] = {
        'len': len,
        'str': str,
        'int': int,
        'float': float,
        'bool': bool,
        'any': any,
        'all': all,
        'true': True,
        'false': False,
    }

    ALLOWED_NODES = (
        ast.Expression, ast.BoolOp, ast.And, ast.Or,
        ast.UnaryOp, ast.Not, ast.USub, ast.UAdd,
        ast.BinOp, ast.Add, ast.Sub,
        ast.Compare, ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
        ast.In, ast.NotIn, ast.Is, ast.IsNot,
        ast.Name, ast.Load, ast.Constant, ast.Subscript, ast.Tuple, ast.List, ast.Call,
    )

    def evaluate(self, condition: str, variables: Mapping[str, Any]) -> bool:
        if not condition or not condition.strip():
            logger.warning("Empty decision condition evaluated to False")
            return False

        eval_context = dict(self.SAFE_BUILTINS)
        eval_context.update(variables)

        try:
            tree = self._parse(condition)
            result = eval(compile(tree, "<condition>", "eval"), {"__builtins__": {}}, eval_context)
            return bool(result)
        except Exception as e:
            logger.warning(f"Failed to evaluate condition '{condition}': {str(e)}")
            return False

    def _parse(self, condition: str) -> ast.Expression:
        tree = ast.parse(condition.strip(), mode="eval")
        for node in ast.walk(tree):
            if not isinstance(node, self.ALLOWED_NODES):
                raise UnsafeExpressionError(f"'{type(node).__name__}' is not allowed in conditions")
            if isinstance(node, ast.Name) and node.id.startswith("_"):
                raise UnsafeExpressionError(f"Name '{node.id}' is not allowed in conditions")
            if isinstance(node, ast.Call):
                if not isinstance(node.func, ast.Name) or not callable(self.SAFE_BUILTINS.get(node.func.id)):
                    raise UnsafeExpressionError("Only the safe builtins may be called in conditions")
                if node.keywords:
                    raise UnsafeExpressionError("Keyword arguments are not allowed in conditions")
        return tree
