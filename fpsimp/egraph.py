"""
E-graph rewriting engine.

An e-graph stores many equivalent expressions compactly: e-classes group
e-nodes known to be equal, and an e-node's children are e-classes rather
than concrete subterms. Rewrites add new members to classes instead of
replacing terms, so nothing learned is ever lost; a Runner applies a rule
set repeatedly until nothing changes (saturation) or a limit is hit.

The e-graph is parameterised by an analysis object providing

    make(egraph, enode) -> data
    merge(existing, incoming) -> (data, changed)
    modify(egraph, class_id)

which lets per-class facts (such as a folded constant) flow through the
graph as it grows.

Example:
    runner = Runner(ConstantFold()).with_expr(parse_expr("(+ x 0)"))
    runner.run([Rewrite.from_text("add-zero", "(+ ?a 0)", "?a")])
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import structlog

from .errors import RewriteError
from .language import (
    ClassId, ENode, ExprType,
    children, format_expr, parse_pattern, pattern_var, pattern_vars, to_enode,
)

logger = structlog.get_logger()

# Pattern variable name -> e-class id
Subst = Dict[str, ClassId]
Match = Tuple[ClassId, Subst]


# ============================================================
# Union-Find
# ============================================================

class UnionFind:
    """Disjoint sets over dense integer ids."""

    def __init__(self):
        self.parents: List[ClassId] = []

    def make_set(self) -> ClassId:
        new_id = len(self.parents)
        self.parents.append(new_id)
        return new_id

    def find(self, x: ClassId) -> ClassId:
        parents = self.parents
        while parents[x] != x:
            # path halving
            parents[x] = parents[parents[x]]
            x = parents[x]
        return x

    def union(self, root1: ClassId, root2: ClassId) -> ClassId:
        self.parents[root2] = root1
        return root1

    def __len__(self) -> int:
        return len(self.parents)


# ============================================================
# E-Classes and the E-Graph
# ============================================================

class EClass:
    """An equivalence class: its member nodes, analysis data and users."""

    __slots__ = ("id", "nodes", "data", "parents")

    def __init__(self, class_id: ClassId, nodes: List[ENode], data: Any):
        self.id = class_id
        self.nodes = nodes
        self.data = data
        # (parent node, parent class) pairs that use this class as a child
        self.parents: List[Tuple[ENode, ClassId]] = []

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    def __repr__(self) -> str:
        nodes = ", ".join(str(n) for n in self.nodes)
        return f"EClass({self.id}, [{nodes}], data={self.data!r})"


class EGraph:
    """
    Hash-consed e-graph with deferred congruence closure.

    Unions leave the graph temporarily non-canonical; call rebuild()
    before searching it.

    Args:
        analysis: Analysis object (see module docstring)
    """

    def __init__(self, analysis):
        self.analysis = analysis
        self._unionfind = UnionFind()
        self._memo: Dict[ENode, ClassId] = {}
        self._classes: Dict[ClassId, EClass] = {}
        self._pending: List[Tuple[ENode, ClassId]] = []
        self._analysis_pending: List[Tuple[ENode, ClassId]] = []

    def __getitem__(self, class_id: ClassId) -> EClass:
        return self._classes[self.find(class_id)]

    def __repr__(self) -> str:
        return (f"EGraph(nodes={self.total_size()}, "
                f"classes={self.number_of_classes()})")

    def classes(self) -> List[EClass]:
        """Snapshot of the current (canonical) e-classes, oldest first."""
        return list(self._classes.values())

    def total_size(self) -> int:
        """Number of hash-consed e-nodes."""
        return len(self._memo)

    def number_of_classes(self) -> int:
        return len(self._classes)

    def find(self, class_id: ClassId) -> ClassId:
        return self._unionfind.find(class_id)

    def equiv(self, a: ClassId, b: ClassId) -> bool:
        return self.find(a) == self.find(b)

    def canonicalize(self, node: ENode) -> ENode:
        return node.map_children(self.find)

    def lookup(self, node: ENode) -> Optional[ClassId]:
        """Class id of an existing node, or None."""
        class_id = self._memo.get(self.canonicalize(node))
        return None if class_id is None else self.find(class_id)

    # --------- adding ---------

    def add(self, node: ENode) -> ClassId:
        """
        Add a node, returning its class id.

        A node already present is not duplicated. A new node gets a fresh
        class whose data comes from analysis.make, after which
        analysis.modify runs on that class.
        """
        node = self.canonicalize(node)
        existing = self._memo.get(node)
        if existing is not None:
            return self.find(existing)

        class_id = self._unionfind.make_set()
        eclass = EClass(class_id, [node], self.analysis.make(self, node))
        for child in node.children:
            self._classes[child].parents.append((node, class_id))
        self._classes[class_id] = eclass
        self._memo[node] = class_id

        self.analysis.modify(self, class_id)
        return self.find(class_id)

    def add_expr(self, expr: ExprType) -> ClassId:
        """Add every subterm of an expression, returning the root's class id."""
        child_ids = [self.add_expr(child) for child in children(expr)]
        return self.add(to_enode(expr, child_ids))

    def add_instantiation(self, pat: ExprType, subst: Subst) -> ClassId:
        """Add a pattern with its variables replaced by the classes in subst."""
        if pattern_var(pat):
            return subst[pat[1]]
        child_ids = [self.add_instantiation(child, subst) for child in children(pat)]
        return self.add(to_enode(pat, child_ids))

    # --------- merging & rebuilding ---------

    def union(self, a: ClassId, b: ClassId) -> Tuple[ClassId, bool]:
        """
        Merge two classes.

        Returns:
            (root of the merged class, whether anything changed)
        """
        a, b = self.find(a), self.find(b)
        if a == b:
            return a, False

        class_a, class_b = self._classes[a], self._classes[b]
        # keep the class with more users as the root
        if len(class_a.parents) < len(class_b.parents):
            a, b = b, a
            class_a, class_b = class_b, class_a

        self._unionfind.union(a, b)
        del self._classes[b]
        self._pending.extend(class_b.parents)

        data, changed = self.analysis.merge(class_a.data, class_b.data)
        if changed:
            self._analysis_pending.extend(class_a.parents)
        if data != class_b.data:
            self._analysis_pending.extend(class_b.parents)
        class_a.data = data
        class_a.nodes.extend(class_b.nodes)
        class_a.parents.extend(class_b.parents)

        self.analysis.modify(self, a)
        return self.find(a), True

    def rebuild(self) -> int:
        """
        Restore congruence and propagate analysis data.

        Returns:
            Number of unions performed while restoring congruence
        """
        n_unions = self._process_unions()
        self._rebuild_classes()
        return n_unions

    def _process_unions(self) -> int:
        n_unions = 0
        while self._pending or self._analysis_pending:
            while self._pending:
                old, class_id = self._pending.pop()
                node = self.canonicalize(old)
                if node != old:
                    self._memo.pop(old, None)
                class_id = self.find(class_id)
                memo_class = self._memo.get(node)
                self._memo[node] = class_id
                if memo_class is not None:
                    _, did_union = self.union(memo_class, class_id)
                    n_unions += did_union

            while self._analysis_pending:
                node, class_id = self._analysis_pending.pop()
                class_id = self.find(class_id)
                eclass = self._classes[class_id]
                data, changed = self.analysis.merge(
                    eclass.data, self.analysis.make(self, node)
                )
                if changed:
                    eclass.data = data
                    self._analysis_pending.extend(eclass.parents)
                    self.analysis.modify(self, class_id)
        return n_unions

    def _rebuild_classes(self) -> None:
        for eclass in self._classes.values():
            eclass.nodes = list(dict.fromkeys(self.canonicalize(n) for n in eclass.nodes))
            eclass.parents = list(dict.fromkeys(
                (self.canonicalize(n), self.find(c)) for n, c in eclass.parents
            ))

    # --------- e-matching ---------

    def search_pattern(self, pat: ExprType) -> List[Match]:
        """
        Find every class containing an instance of pat.

        Returns:
            (class id, substitution) pairs, one per distinct substitution
        """
        matches: List[Match] = []
        for eclass in self.classes():
            seen = set()
            for subst in self._match(pat, eclass.id, {}):
                key = tuple(sorted(subst.items()))
                if key not in seen:
                    seen.add(key)
                    matches.append((eclass.id, subst))
        return matches

    def _match(self, pat: ExprType, class_id: ClassId, subst: Subst) -> Iterator[Subst]:
        class_id = self.find(class_id)
        if pattern_var(pat):
            name = pat[1]
            bound = subst.get(name)
            if bound is None:
                yield {**subst, name: class_id}
            elif self.find(bound) == class_id:
                yield subst
            return

        shape = to_enode(pat)
        pat_children = children(pat)
        for node in self._classes[class_id].nodes:
            if node.op != shape.op or node.payload != shape.payload:
                continue
            yield from self._match_children(pat_children, node.children, subst)

    def _match_children(
        self, pats: Sequence[ExprType], ids: Sequence[ClassId], subst: Subst
    ) -> Iterator[Subst]:
        if not pats:
            yield subst
            return
        for extended in self._match(pats[0], ids[0], subst):
            yield from self._match_children(pats[1:], ids[1:], extended)


# ============================================================
# Rewrites
# ============================================================

class Rewrite:
    """
    A named, immutable rewrite rule lhs => rhs.

    Args:
        name: Rule name (reported in iteration statistics)
        lhs: Pattern to search for
        rhs: Pattern to add and merge with each match

    Raises:
        RewriteError: If rhs uses a pattern variable lhs does not bind
    """

    __slots__ = ("name", "lhs", "rhs")

    def __init__(self, name: str, lhs: ExprType, rhs: ExprType):
        unbound = [v for v in pattern_vars(rhs) if v not in pattern_vars(lhs)]
        if unbound:
            names = ", ".join(f"?{v}" for v in unbound)
            raise RewriteError(f"Rewrite '{name}' refers to unbound variable(s) {names}")
        self.name = name
        self.lhs = lhs
        self.rhs = rhs

    @classmethod
    def from_text(cls, name: str, lhs: str, rhs: str) -> "Rewrite":
        """Build a rewrite from pattern text; raises ParseError on bad patterns."""
        return cls(name, parse_pattern(lhs), parse_pattern(rhs))

    def __repr__(self) -> str:
        return f"@{self.name}: {format_expr(self.lhs)} => {format_expr(self.rhs)}"

    def search(self, egraph: EGraph) -> List[Match]:
        return egraph.search_pattern(self.lhs)

    def apply(self, egraph: EGraph, matches: List[Match]) -> int:
        """Instantiate rhs for each match; returns how many unions changed the graph."""
        applied = 0
        for class_id, subst in matches:
            new_id = egraph.add_instantiation(self.rhs, subst)
            _, did_union = egraph.union(class_id, new_id)
            applied += did_union
        return applied


# ============================================================
# Runner
# ============================================================

class StopReason(NamedTuple):
    """Why a run stopped: Saturated, IterationLimit or NodeLimit."""

    kind: str
    limit: Optional[int] = None

    def to_json(self) -> Any:
        if self.limit is None:
            return self.kind
        return {self.kind: self.limit}

    def __str__(self) -> str:
        if self.limit is None:
            return self.kind
        return f"{self.kind}({self.limit})"


SATURATED = StopReason("Saturated")


@dataclass
class Iteration:
    """Statistics for one round of search / apply / rebuild."""

    egraph_nodes: int
    egraph_classes: int
    applied: Dict[str, int] = field(default_factory=dict)
    search_time: float = 0.0
    apply_time: float = 0.0
    rebuild_time: float = 0.0
    total_time: float = 0.0
    n_unions: int = 0
    stop_reason: Optional[StopReason] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for JSON serialization."""
        return {
            "egraph_nodes": self.egraph_nodes,
            "egraph_classes": self.egraph_classes,
            "applied": dict(self.applied),
            "search_time": self.search_time,
            "apply_time": self.apply_time,
            "rebuild_time": self.rebuild_time,
            "total_time": self.total_time,
            "n_unions": self.n_unions,
            "stop_reason": self.stop_reason.to_json() if self.stop_reason else None,
        }


class Runner:
    """
    Runs rewrites over an e-graph until saturation or a limit.

    Limits are deterministic: the run stops once the e-graph holds more
    than node_limit nodes or after iter_limit iterations. Reaching a limit
    is not an error; the graph is simply left as it is.

    Example:
        runner = Runner(ConstantFold(), node_limit=1000)
        runner.with_expr(parse_expr("(* x 1)")).run(rewrites)
        runner.stop_reason  # => StopReason("Saturated")
    """

    def __init__(self, analysis, node_limit: int = 10_000, iter_limit: int = 30):
        self.egraph = EGraph(analysis)
        self.node_limit = node_limit
        self.iter_limit = iter_limit
        self.roots: List[ClassId] = []
        self.iterations: List[Iteration] = []
        self.stop_reason: Optional[StopReason] = None

    def with_expr(self, expr: ExprType) -> "Runner":
        """Add an expression and record its class as a root."""
        self.roots.append(self.egraph.add_expr(expr))
        return self

    def run(self, rewrites: Sequence[Rewrite]) -> "Runner":
        self.egraph.rebuild()
        while self.stop_reason is None:
            iteration = self._run_one(rewrites)
            self.iterations.append(iteration)
            self.stop_reason = iteration.stop_reason
            logger.debug(
                "runner.iteration",
                index=len(self.iterations) - 1,
                nodes=iteration.egraph_nodes,
                classes=iteration.egraph_classes,
                applied=sum(iteration.applied.values()),
            )

        logger.info(
            "runner.stopped",
            reason=str(self.stop_reason),
            iterations=len(self.iterations),
            nodes=self.egraph.total_size(),
        )
        return self

    def _check_limits(self) -> Optional[StopReason]:
        if len(self.iterations) >= self.iter_limit:
            return StopReason("IterationLimit", len(self.iterations))
        return self._check_node_limit()

    def _check_node_limit(self) -> Optional[StopReason]:
        size = self.egraph.total_size()
        if size > self.node_limit:
            return StopReason("NodeLimit", self.node_limit)
        return None

    def _run_one(self, rewrites: Sequence[Rewrite]) -> Iteration:
        start = time.perf_counter()
        egraph = self.egraph
        nodes_before = egraph.total_size()
        classes_before = egraph.number_of_classes()
        applied: Dict[str, int] = {}
        search_time = apply_time = 0.0

        stop = self._check_limits()
        if stop is None:
            search_start = time.perf_counter()
            matches = [(rw, rw.search(egraph)) for rw in rewrites]
            search_time = time.perf_counter() - search_start

            apply_start = time.perf_counter()
            for rw, rw_matches in matches:
                n = rw.apply(egraph, rw_matches)
                if n:
                    applied[rw.name] = applied.get(rw.name, 0) + n
                stop = self._check_node_limit()
                if stop is not None:
                    break
            apply_time = time.perf_counter() - apply_start

        rebuild_start = time.perf_counter()
        n_unions = egraph.rebuild()
        rebuild_time = time.perf_counter() - rebuild_start

        if (stop is None and not applied
                and egraph.total_size() == nodes_before
                and egraph.number_of_classes() == classes_before):
            stop = SATURATED

        return Iteration(
            egraph_nodes=egraph.total_size(),
            egraph_classes=egraph.number_of_classes(),
            applied=applied,
            search_time=search_time,
            apply_time=apply_time,
            rebuild_time=rebuild_time,
            total_time=time.perf_counter() - start,
            n_unions=n_unions,
            stop_reason=stop,
        )
