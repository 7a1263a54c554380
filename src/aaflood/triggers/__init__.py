from .statement import AllOf, AnyOf, Comparison, Not, parse_statement
from .evaluator import EvaluationReport, FiredTrigger, TriggerEvaluator

__all__ = [
    "AllOf",
    "AnyOf",
    "Comparison",
    "Not",
    "parse_statement",
    "EvaluationReport",
    "FiredTrigger",
    "TriggerEvaluator",
]
