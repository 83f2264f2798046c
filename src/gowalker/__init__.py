"""gowalker - Go package documentation crawler and renderer."""

from importlib.metadata import version

from gowalker.__main__ import _cli as main
from gowalker.highlight import format_code
from gowalker.orchestrator import Orchestrator, RequestType

__version__ = version("gowalker")
__all__ = ["Orchestrator", "RequestType", "format_code", "main", "__version__"]
