"""Action routing for unified tools.

Each unified tool exposes one MCP entry point taking an ``action`` argument;
the router maps that action (or one of its aliases) to a handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


class ActionRouterError(ValueError):
    """Raised when an action is missing or not supported by the tool."""

    def __init__(self, message: str, *, allowed_actions: Sequence[str] = ()):
        super().__init__(message)
        self.allowed_actions: Tuple[str, ...] = tuple(allowed_actions)


@dataclass(frozen=True)
class ActionDefinition:
    """One routable action.

    Attributes:
        name: Canonical action name (kebab-case)
        handler: Callable invoked with the dispatch keyword arguments
        summary: One-line description surfaced by ``describe()``
        aliases: Alternative spellings accepted for the action
    """

    name: str
    handler: Callable[..., dict]
    summary: str = ""
    aliases: Tuple[str, ...] = ()


class ActionRouter:
    """Dispatch table from action names to handlers for one tool."""

    def __init__(self, *, tool_name: str, actions: Sequence[ActionDefinition]):
        if not actions:
            raise ValueError(f"Router for '{tool_name}' needs at least one action")

        self.tool_name = tool_name
        self._definitions: List[ActionDefinition] = list(actions)
        self._lookup: Dict[str, ActionDefinition] = {}
        for definition in self._definitions:
            for key in (definition.name, *definition.aliases):
                normalized = key.strip().lower()
                if normalized in self._lookup:
                    raise ValueError(
                        f"Duplicate action '{key}' for tool '{tool_name}'"
                    )
                self._lookup[normalized] = definition

    def allowed_actions(self) -> List[str]:
        return [definition.name for definition in self._definitions]

    def describe(self) -> Dict[str, str]:
        return {definition.name: definition.summary for definition in self._definitions}

    def resolve(self, action: Optional[str]) -> ActionDefinition:
        if not isinstance(action, str) or not action.strip():
            raise ActionRouterError(
                f"Tool '{self.tool_name}' requires an action",
                allowed_actions=self.allowed_actions(),
            )
        definition = self._lookup.get(action.strip().lower())
        if definition is None:
            raise ActionRouterError(
                f"Unsupported action '{action}' for tool '{self.tool_name}'",
                allowed_actions=self.allowed_actions(),
            )
        return definition

    def dispatch(self, action: Optional[str] = None, **kwargs: Any) -> dict:
        return self.resolve(action).handler(**kwargs)
