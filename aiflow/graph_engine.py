"""
RoutingGraph: networkx view of a project's routing rules.

Used by the validator for reachability and cycle checks, and by the CLI for
exporting the graph. Routing itself never consults this graph: the Router walks
``flow.logic`` directly so that rule declaration order is preserved.
"""

from typing import Any, Dict, List, Optional, Set

import networkx as nx

from .schemas import Project


class RoutingGraph:
    """Directed graph with one node per agent and one edge per rule."""

    def __init__(self, project: Project):
        self.project = project
        self.graph: nx.MultiDiGraph = nx.MultiDiGraph()
        for agent in project.agents:
            self.graph.add_node(agent.id, declared=True)
        for idx, rule in enumerate(project.flow.logic):
            if not rule.from_ or not rule.to:
                continue
            for end in (rule.from_, rule.to):
                if end not in self.graph.nodes:
                    self.graph.add_node(end, declared=False)
            self.graph.add_edge(rule.from_, rule.to, key=rule.id or idx, condition=rule.effective_condition)

    # ─── Queries ─────────────────────────────────────────────────

    @property
    def entry(self) -> Optional[str]:
        return self.project.flow.entry_agent

    def successors(self, agent_id: str) -> List[str]:
        if agent_id not in self.graph.nodes:
            return []
        return list(dict.fromkeys(self.graph.successors(agent_id)))

    def reachable(self, start: Optional[str] = None) -> Set[str]:
        start = start or self.entry
        if not start or start not in self.graph.nodes:
            return set()
        return {start} | nx.descendants(self.graph, start)

    def unreachable_agents(self, start: Optional[str] = None) -> List[str]:
        seen = self.reachable(start)
        return [a.id for a in self.project.agents if a.id not in seen]

    def cycles(self) -> List[List[str]]:
        """Elementary routing cycles, self-loops included."""
        simple = nx.DiGraph(self.graph)
        return [list(c) for c in nx.simple_cycles(simple)]

    @property
    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self.graph)

    # ─── Export ──────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        nodes = []
        for nid, data in self.graph.nodes(data=True):
            nodes.append({
                "id": nid,
                "declared": data.get("declared", False),
                "next": self.successors(nid),
            })
        edges = [
            {"from": u, "to": v, "id": k, "condition": d.get("condition")}
            for u, v, k, d in self.graph.edges(keys=True, data=True)
        ]
        return {
            "entry": self.entry,
            "node_count": self.graph.number_of_nodes(),
            "edge_count": self.graph.number_of_edges(),
            "is_acyclic": self.is_acyclic,
            "nodes": nodes,
            "edges": edges,
        }
