"""
Cost model and extraction.

Extraction picks, for an e-class, the cheapest concrete expression it
represents. The cost of a node is its own cost plus the best costs of its
children's classes; with AstSize every node costs 1, so the cost of an
expression is its number of nodes.
"""

from typing import Dict, List, Optional, Tuple

from .egraph import EClass, EGraph
from .language import ClassId, ENode, ExprType, children, from_enode


class AstSize:
    """Uniform cost: one per node."""

    def cost(self, enode: ENode, child_costs: List[int]) -> int:
        return 1 + sum(child_costs)


def ast_size(expr: ExprType) -> int:
    """Number of nodes in an expression tree."""
    return 1 + sum(ast_size(child) for child in children(expr))


class Extractor:
    """
    Lowest-cost extraction over a snapshot of an e-graph.

    Class costs are computed once, at construction, by iterating to a
    fixpoint; build a new Extractor after the e-graph changes.

    Ties between equally cheap members of a class go to the member that
    was inserted first.

    Args:
        egraph: The e-graph to extract from
        cost_function: Object with cost(enode, child_costs); default AstSize
    """

    def __init__(self, egraph: EGraph, cost_function=None):
        self.egraph = egraph
        self.cost_function = cost_function if cost_function is not None else AstSize()
        self._costs: Dict[ClassId, Tuple[int, ENode]] = {}
        self._find_costs()

    def find_best(self, class_id: ClassId) -> Tuple[int, ExprType]:
        """
        Cheapest expression in a class.

        Returns:
            (cost, expression)

        Raises:
            KeyError: If the class has no finite-cost member
        """
        cost, _ = self._costs[self.egraph.find(class_id)]
        return cost, self._build(class_id)

    def find_best_cost(self, class_id: ClassId) -> int:
        return self._costs[self.egraph.find(class_id)][0]

    def find_best_node(self, class_id: ClassId) -> ENode:
        return self._costs[self.egraph.find(class_id)][1]

    def _build(self, class_id: ClassId) -> ExprType:
        node = self.find_best_node(class_id)
        return from_enode(node, [self._build(child) for child in node.children])

    def _node_cost(self, node: ENode) -> Optional[int]:
        child_costs = []
        for child in node.children:
            entry = self._costs.get(self.egraph.find(child))
            if entry is None:
                return None
            child_costs.append(entry[0])
        return self.cost_function.cost(node, child_costs)

    def _best_member(self, eclass: EClass) -> Optional[Tuple[int, ENode]]:
        best = None
        for node in eclass.nodes:
            cost = self._node_cost(node)
            if cost is not None and (best is None or cost < best[0]):
                best = (cost, node)
        return best

    def _find_costs(self) -> None:
        classes = self.egraph.classes()
        changed = True
        while changed:
            changed = False
            for eclass in classes:
                best = self._best_member(eclass)
                if best is None:
                    continue
                current = self._costs.get(eclass.id)
                if current is None or best[0] < current[0]:
                    self._costs[eclass.id] = best
                    changed = True

        # Costs are now minimal; re-pick so the earliest cheapest member wins
        for eclass in classes:
            if eclass.id in self._costs:
                self._costs[eclass.id] = self._best_member(eclass)
