"""Semantic memory MCP server.

Serializes every index operation through a FIFO queue, initializes the
embedding engine with bounded retries and keeps process-lifetime metrics.
"""

from .config import ServerConfig, load_config
from .filters import QueryFilterSpec
from .handlers import SemanticTools
from .initializer import RetryingInitializer, RetryPolicy
from .mcp_server import main, run_server
from .metrics import MetricsAccumulator
from .op_queue import OperationQueue

__all__ = [
    "MetricsAccumulator",
    "OperationQueue",
    "QueryFilterSpec",
    "RetryPolicy",
    "RetryingInitializer",
    "SemanticTools",
    "ServerConfig",
    "load_config",
    "main",
    "run_server",
]
