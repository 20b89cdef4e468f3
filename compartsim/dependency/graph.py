"""
Dependency Graph

Directed graph of references between definitions, keyed by entity uid.
An edge ``a -> b`` means the definition of ``a`` references ``b``; the
entities depending on ``b`` are therefore its predecessors.

Shortcuts never appear as nodes: a reference to a shortcut is stored as
edges to each of its member compartments.
"""

from typing import Any, Callable, Iterable, Optional, Set, Tuple

import networkx as nx


class DependencyGraph:
    """Reference bookkeeping for parameters, processes and compartments."""

    def __init__(self):
        self._graph = nx.DiGraph()

    @property
    def graph(self) -> nx.DiGraph:
        """Underlying networkx graph (read-only use)."""
        return self._graph

    def add_entity(self, uid: str, kind: Any) -> None:
        self._graph.add_node(uid, kind=kind)

    def remove_entity(self, uid: str) -> None:
        """Drop an entity together with every edge touching it."""
        if uid in self._graph:
            self._graph.remove_node(uid)

    def kind_of(self, uid: str) -> Any:
        return self._graph.nodes[uid]['kind']

    def set_links(self, uid: str, referenced: Iterable[str]) -> None:
        """
        Replace the outgoing references of an entity.

        Links previously contributed by the entity are removed first, so no
        stale link survives an edit.

        Args:
            uid: Referencing entity
            referenced: Uids its definition now references
        """
        self.clear_links(uid)
        self._graph.add_edges_from((uid, target) for target in referenced if target != uid)

    def clear_links(self, uid: str) -> None:
        self._graph.remove_edges_from(list(self._graph.out_edges(uid)))

    def references_of(self, uid: str) -> Set[str]:
        """Uids referenced by ``uid``'s definition."""
        return set(self._graph.successors(uid))

    def dependents_of(self, uid: str, kinds: Optional[Iterable[Any]] = None) -> Set[str]:
        """
        Uids whose definitions reference ``uid``.

        Args:
            uid: Referenced entity
            kinds: Restrict to referencing entities of these kinds
        """
        dependents = set(self._graph.predecessors(uid))
        if kinds is not None:
            kinds = set(kinds)
            dependents = {d for d in dependents if self.kind_of(d) in kinds}
        return dependents

    def references(self, source: str, target: str) -> bool:
        """True if the definition of ``source`` references ``target``."""
        return self._graph.has_edge(source, target)

    def has_dependents(self, uid: str) -> bool:
        return self._graph.in_degree(uid) > 0

    def named_edges(self, name_of: Callable[[str], str]) -> Set[Tuple[str, str]]:
        """Edges expressed as (referrer name, referenced name) pairs."""
        return {(name_of(a), name_of(b)) for a, b in self._graph.edges}

    def __contains__(self, uid: str) -> bool:
        return uid in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()
