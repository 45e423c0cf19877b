"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """Base class for all assistant tools.

    A tool that sets ``requires_confirmation`` is never run automatically: it
    executes only once the user has approved the call.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    requires_confirmation: bool = False

    @abstractmethod
    async def run(self, **kwargs: Any) -> Any:
        """Execute tool with validated arguments."""
