from .classifier import ErrorClassifier, SuppressionState
from .cleaner import CodeCleaner
from .client import EvalResult, WorkerClient, WorkerError
from .config import WorkerConfig
from .errors import ExecutionTimedOut, FatalWarning, PreprocessError, ProtocolError, WarningError
from .evaluator import Evaluator, PythonEvaluator
from .loop import EvaluationLoop
from .session import Session, TypeRegistry
from .timeout import TimeoutGuard
from .transport import Request, Response, Transport

__all__ = [
    "CodeCleaner",
    "ErrorClassifier",
    "EvalResult",
    "EvaluationLoop",
    "Evaluator",
    "ExecutionTimedOut",
    "FatalWarning",
    "PreprocessError",
    "ProtocolError",
    "PythonEvaluator",
    "Request",
    "Response",
    "Session",
    "SuppressionState",
    "TimeoutGuard",
    "Transport",
    "TypeRegistry",
    "WarningError",
    "WorkerClient",
    "WorkerConfig",
    "WorkerError",
]
