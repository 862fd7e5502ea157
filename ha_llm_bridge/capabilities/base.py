"""Base class for bridge capabilities."""

from typing import Any, Dict, Optional


class Capability:
    """A unit of bridge functionality operating on the current registry view.

    Subclasses set `name` and `description` and implement `run`.
    """

    name: str = "capability"
    description: str = ""

    def __init__(self, registry, config: Optional[Dict[str, Any]] = None):
        self.registry = registry
        self.config = config or {}

    @property
    def view(self):
        """Current complete registry view (snapshot + name index)."""
        return self.registry.view

    async def run(self, user_input: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"
