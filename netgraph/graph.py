# netgraph/graph.py
from collections import defaultdict, deque
from dataclasses import replace
from types import MappingProxyType

from netgraph.node import (
    CONCAT, INPUT, VERTEX_OPS,
    CnnToFeedForward, InputConfig, InputType, MergeConfig, Node,
)
from utils.logger import get_logger

logger = get_logger("graph", logfile="logs/graph.log")


class GraphError(ValueError):
    """Base class for rejected graph construction steps."""


class DuplicateNodeError(GraphError):
    pass


class UnknownProducerError(GraphError):
    pass


class UndeclaredOutputError(GraphError):
    pass


class GraphFinalizedError(GraphError):
    pass


def _checked_input_types(input_types):
    input_types = list(input_types)
    for t in input_types:
        if not isinstance(t, InputType):
            raise GraphError(f"Expected InputType, got {t!r}")
    return input_types


class ComputationGraph:
    """
    Immutable result of GraphContext.build(): the node mapping, the designated
    inputs and outputs, and the input types the engine validates against.
    """

    def __init__(self, nodes, inputs, outputs, input_types=()):
        self._nodes = dict(nodes)
        self.nodes = MappingProxyType(self._nodes)
        self.inputs = tuple(inputs)
        self.outputs = tuple(outputs)
        self.input_types = tuple(input_types)

        self._children = defaultdict(list)
        for node_id, node in self._nodes.items():
            for p in node.parents:
                self._children[p].append(node_id)

    def __setattr__(self, key, value):
        if getattr(self, '_sealed', False):
            raise AttributeError("ComputationGraph is immutable")
        super().__setattr__(key, value)

    def _seal(self):
        self._sealed = True
        return self

    def __len__(self):
        return len(self._nodes)

    def __contains__(self, node_id):
        return node_id in self._nodes

    def children(self, node_id):
        return tuple(self._children.get(node_id, ()))

    def topological_sort(self):
        """
        Kahn's algorithm; ties keep insertion order.
        Raises GraphError if a cycle exists.
        """
        indegree = {nid: len(node.parents) for nid, node in self._nodes.items()}
        queue = deque(nid for nid in self._nodes if indegree[nid] == 0)

        order = []
        while queue:
            u = queue.popleft()
            order.append(u)
            for v in self._children.get(u, ()):
                indegree[v] -= 1
                if indegree[v] == 0:
                    queue.append(v)

        if len(order) != len(self._nodes):
            raise GraphError("Graph has a cycle!")
        return order

    def ancestors(self, node_id):
        """All node ids reachable from `node_id` by walking producer edges backward."""
        seen = set()
        stack = list(self._nodes[node_id].parents)
        while stack:
            nid = stack.pop()
            if nid in seen:
                continue
            seen.add(nid)
            stack.extend(self._nodes[nid].parents)
        return seen

    def reachable_from_inputs(self, node_id):
        if node_id in self.inputs:
            return True
        return any(a in self.inputs for a in self.ancestors(node_id))

    def count_by_op(self):
        counts = defaultdict(int)
        for node in self._nodes.values():
            counts[node.op_type] += 1
        return dict(counts)

    def __repr__(self):
        lines = ["ComputationGraph:"]
        for nid in self.topological_sort():
            n = self._nodes[nid]
            lines.append(
                f"  Node {nid}: op={n.op_type}, parents={list(n.parents)}"
            )
        lines.append(f"  Inputs: {list(self.inputs)}")
        lines.append(f"  Outputs: {list(self.outputs)}")
        return "\n".join(lines)


class GraphContext:
    """
    Mutable, append-only construction context for one network definition.

    Nodes may only reference producers that already exist, so the graph is
    acyclic by construction. build() validates the remaining invariants and
    freezes the context.
    """

    def __init__(self, input_types=None):
        self._nodes = {}          # node_id -> Node, in insertion order
        self._inputs = []
        self._outputs = []
        self._input_types = _checked_input_types(input_types or ())
        self._counter = 0
        self._graph = None

    def __contains__(self, node_id):
        return node_id in self._nodes

    def __len__(self):
        return len(self._nodes)

    @property
    def finalized(self):
        return self._graph is not None

    def node(self, node_id):
        return self._nodes[node_id]

    def _check_mutable(self):
        if self._graph is not None:
            logger.error("Mutation attempted on finalized graph context")
            raise GraphFinalizedError("Graph context was already built; no further mutation allowed")

    def _check_new_id(self, node_id):
        if not isinstance(node_id, str) or not node_id:
            raise GraphError(f"Node id must be a non-empty string, got {node_id!r}")
        if node_id in self._nodes:
            logger.error("Duplicate node id %s", node_id)
            raise DuplicateNodeError(f"Duplicate node id {node_id}")

    def _check_producers(self, node_id, producer_ids):
        if not producer_ids:
            raise GraphError(f"Node {node_id} needs at least one producer")
        missing = [p for p in producer_ids if p not in self._nodes]
        if missing:
            logger.error("Node %s references unknown producer(s) %s", node_id, missing)
            raise UnknownProducerError(f"Unknown producer(s) for node {node_id}: {missing}")

    def _insert(self, node_id, config, parents, preprocessor=None):
        node = Node(node_id, config, tuple(parents), index=self._counter,
                    preprocessor=preprocessor)
        self._counter += 1
        self._nodes[node_id] = node
        logger.debug("Added node %s (#%d): op=%s parents=%s",
                     node_id, node.index, node.op_type, list(node.parents))
        return node_id

    def next_label(self, prefix):
        """Smallest `prefix<n>` not used as a node id or as a block label inside one (conv_<label>)."""
        n = 0
        while any(nid == f"{prefix}{n}" or nid.endswith(f"_{prefix}{n}") for nid in self._nodes):
            n += 1
        return f"{prefix}{n}"

    def add_input(self, name):
        self._check_mutable()
        self._check_new_id(name)
        self._inputs.append(name)
        return self._insert(name, InputConfig(), ())

    def add_inputs(self, *names):
        return [self.add_input(name) for name in names]

    def set_input_types(self, *input_types):
        self._check_mutable()
        self._input_types = _checked_input_types(input_types)

    def add_layer(self, node_id, config, *producer_ids):
        """
        Insert a layer consuming `producer_ids`. Several producers are first
        concatenated by an implicit `<node_id>-merge` vertex so that only
        merge-style nodes ever have more than one producer.
        """
        self._check_mutable()
        self._check_new_id(node_id)
        if config.op_type in VERTEX_OPS or config.op_type == INPUT:
            raise GraphError(f"add_layer cannot insert a {config.op_type} node; use add_vertex/add_input")
        self._check_producers(node_id, producer_ids)

        parents = producer_ids
        if len(producer_ids) > 1:
            merge_id = f"{node_id}-merge"
            self._check_new_id(merge_id)
            self._insert(merge_id, MergeConfig(CONCAT), producer_ids)
            parents = (merge_id,)
        return self._insert(node_id, config, parents)

    def add_vertex(self, node_id, op, *producer_ids):
        self._check_mutable()
        self._check_new_id(node_id)
        config = op if isinstance(op, MergeConfig) else MergeConfig(op)
        self._check_producers(node_id, producer_ids)
        if len(producer_ids) < 2:
            raise GraphError(f"Merge vertex {node_id} needs at least two producers")
        if config.op == 'subtract' and len(producer_ids) != 2:
            raise GraphError(f"Subtract vertex {node_id} takes exactly two producers")
        return self._insert(node_id, config, producer_ids)

    def set_preprocessor(self, node_id, preprocessor):
        self._check_mutable()
        if node_id not in self._nodes:
            raise UnknownProducerError(f"Cannot attach preprocessor to unknown node {node_id}")
        if not isinstance(preprocessor, CnnToFeedForward):
            raise GraphError(f"Unsupported preprocessor {preprocessor!r}")
        node = self._nodes[node_id]
        if node.op_type == INPUT or node.is_merge():
            raise GraphError(f"Node {node_id} (op={node.op_type}) cannot take a preprocessor")
        self._nodes[node_id] = replace(node, preprocessor=preprocessor)
        logger.debug("Attached %s to node %s", preprocessor, node_id)

    def set_outputs(self, *names):
        self._check_mutable()
        # accept set_outputs(["a", "b"]) as well as set_outputs("a", "b")
        if len(names) == 1 and not isinstance(names[0], str):
            names = tuple(names[0])
        self._outputs = list(names)

    def build(self):
        if self._graph is not None:
            return self._graph

        if not self._inputs:
            raise GraphError("Graph declares no inputs")
        if not self._outputs:
            raise UndeclaredOutputError("Graph declares no outputs")
        undefined = [o for o in self._outputs if o not in self._nodes]
        if undefined:
            logger.error("Outputs %s were never added. Available: %s", undefined, list(self._nodes))
            raise UndeclaredOutputError(f"Undeclared output(s): {undefined}")
        if len(set(self._outputs)) != len(self._outputs):
            raise GraphError(f"Duplicate outputs in {self._outputs}")
        if self._input_types and len(self._input_types) != len(self._inputs):
            raise GraphError(
                f"{len(self._input_types)} input types for {len(self._inputs)} inputs")

        for node in self._nodes.values():
            if node.op_type != INPUT and not node.parents:
                raise GraphError(f"Node {node.id} has no producer")

        graph = ComputationGraph(self._nodes, self._inputs, self._outputs, self._input_types)
        graph.topological_sort()
        for out in graph.outputs:
            if not graph.reachable_from_inputs(out):
                raise GraphError(f"Output {out} is not reachable from any input")

        self._graph = graph._seal()
        logger.info("Built graph: %d nodes, inputs=%s outputs=%s",
                    len(graph), list(graph.inputs), list(graph.outputs))
        return self._graph
