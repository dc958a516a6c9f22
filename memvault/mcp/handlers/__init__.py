"""Handler registry for MCP tools.

Merges HANDLERS and VALIDATORS from all sub-modules into unified dicts.
"""

from typing import Callable, Dict

from memvault.mcp.handlers.documents import HANDLERS as _DOCUMENTS_H
from memvault.mcp.handlers.documents import VALIDATORS as _DOCUMENTS_V
from memvault.mcp.handlers.memory import HANDLERS as _MEMORY_H
from memvault.mcp.handlers.memory import VALIDATORS as _MEMORY_V

HANDLERS: Dict[str, Callable] = {
    **_MEMORY_H,
    **_DOCUMENTS_H,
}

VALIDATORS: Dict[str, Callable] = {
    **_MEMORY_V,
    **_DOCUMENTS_V,
}
