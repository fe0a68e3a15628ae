"""
Graph runner — pre-compiled nodnod agent with typed injection.

    CREATION = compile_graph(FinalResultNode)
    final = await CREATION.run(spec)
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, cast

from nodnod import EventLoopAgent, Node, Scope, Value
from nodnod import scalar_node as node


# ═══════════════════════════════════════════════════════════════════════════════
# TypedScope
# ═══════════════════════════════════════════════════════════════════════════════


class TypedScope:
    """Type-safe wrapper around nodnod.Scope."""

    __slots__ = ("_scope",)

    def __init__(self, detail: str = "scope") -> None:
        self._scope = Scope(detail=detail)

    @property
    def inner(self) -> Scope:
        return self._scope

    def inject[T](self, typ: type[T], value: T) -> TypedScope:
        self._scope.push(Value(typ, value))
        return self

    def get[T](self, typ: type[T]) -> T:
        result = self._scope.get(typ)
        if result is None:
            raise KeyError(f"{typ.__name__} not found in scope")
        return cast(T, result.value)

    async def __aenter__(self) -> TypedScope:
        await self._scope.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._scope.__aexit__(*args)


# ═══════════════════════════════════════════════════════════════════════════════
# Compiled — build the agent once, run per request
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class Compiled[T]:
    """
    Pre-compiled graph.

    Note: EventLoopAgent.build обходит зависимости один раз — при импорте
    модуля графа, а не на каждый запрос.
    """

    _target: type[T]
    _agent: EventLoopAgent

    async def run(self, *inputs: object) -> T:
        """Inject inputs by their runtime type, execute, return the target node."""
        async with TypedScope(detail=self._target.__name__) as scope:
            for value in inputs:
                scope.inject(cast(type[Any], type(value)), value)

            run_method = cast(
                Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
                getattr(self._agent, "run"),
            )
            await run_method(scope.inner, {})

            return scope.get(self._target)


def compile_graph[T](target: type[T]) -> Compiled[T]:
    all_nodes: set[type[Node[Any, Any]]] = {cast(type[Node[Any, Any]], target)}
    return Compiled(_target=target, _agent=EventLoopAgent.build(all_nodes))


__all__ = ("node", "TypedScope", "Compiled", "compile_graph")
