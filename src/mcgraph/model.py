"""
Model dependency graph.

GenericModel stores variables and dependencies as contiguous lists indexed by
the dense vertex index (1..N), with forward and backward incidence lists per
vertex and a key -> index map, so lookups by key or by index are O(1).

    model = build_model(
        [Constant('tau'), Data('y'), Parameter('mu', ...)],
        [('tau', 'mu'), ('y', 'mu')],
    )
    model['mu']               # Variable by key
    model.vertex(3)           # Variable by index
    model.topological_order() # sources before targets

Undirected graphs insert the reverse of every edge into the incidence lists;
they have no topological order once they hold an edge.
"""

from typing import IO, Iterable, List, Sequence, Tuple, Union

import networkx as nx

from .error_handling import ConfigurationError, CyclicGraphError, DuplicateKeyError
from .variables import Parameter, Variable

VariableRef = Union[Variable, str]


class Dependency:
    """Edge of the model graph: target depends on source."""

    __slots__ = ('index', 'source', 'target')

    def __init__(self, index: int, source: Variable, target: Variable):
        self.index = index
        self.source = source
        self.target = target

    def reverse(self) -> 'Dependency':
        return Dependency(self.index, self.target, self.source)

    def __repr__(self):
        return f"Dependency [{self.index}]: {self.source.key} -> {self.target.key}"


class GenericModel:
    """
    Graph of model variables and their dependencies.

    Args:
        variables: Initial variables
        dependencies: Initial edges, as Dependency objects or (source, target)
                      pairs of variables or keys
        is_directed: Directed (default) or undirected graph
        is_indexed: Variables already carry their indices, which must form a
                    dense permutation of 1..N
    """

    def __init__(self, variables: Iterable[Variable] = (),
                 dependencies: Iterable = (),
                 is_directed: bool = True, is_indexed: bool = False):
        self.is_directed = is_directed
        self.vertices: List[Variable] = []
        self.edges: List[Dependency] = []
        self._out: List[List[Dependency]] = []
        self._in: List[List[Dependency]] = []
        self._ofkey = {}

        variables = list(variables)
        if is_indexed:
            indices = sorted(v.index for v in variables)
            if indices != list(range(1, len(variables) + 1)):
                raise ConfigurationError(
                    f"Indices {indices} are not a dense permutation of 1..{len(variables)}"
                )
            variables.sort(key=lambda v: v.index)
        self.is_indexed = is_indexed
        self.add_variables(variables)

        for d in dependencies:
            if isinstance(d, Dependency):
                self.add_dependency(d.source, d.target)
            else:
                self.add_dependency(*d)

    # --- construction ----------------------------------------------------

    def add_variable(self, v: Variable) -> Variable:
        """
        Append v to the graph, assigning it the next index. A variable that
        already carries an index keeps it only if it is the next position.

        Raises:
            DuplicateKeyError: If a variable with the same key exists
            ConfigurationError: If v.index is not the next position and
                                either the graph is indexed or v carries
                                an index of its own
        """
        if v.key in self._ofkey:
            raise DuplicateKeyError(f"Variable key '{v.key}' already exists in the model")
        n = len(self.vertices) + 1
        if (self.is_indexed or v.is_indexed) and v.index != n:
            raise ConfigurationError(
                f"Variable '{v.key}' has index {v.index}, expected {n}"
            )
        v.index = n
        self.vertices.append(v)
        self._out.append([])
        self._in.append([])
        self._ofkey[v.key] = n
        return v

    def add_variables(self, vs: Iterable[Variable]) -> None:
        for v in vs:
            self.add_variable(v)

    def _resolve(self, v: VariableRef) -> Variable:
        if isinstance(v, Variable):
            if self._ofkey.get(v.key) != v.index or self.vertices[v.index - 1] is not v:
                raise KeyError(v.key)
            return v
        return self[v]

    def add_dependency(self, source: VariableRef, target: VariableRef) -> Dependency:
        """
        Add the edge source -> target.

        Raises:
            KeyError: If either end is not in the model
        """
        u = self._resolve(source)
        v = self._resolve(target)
        d = Dependency(len(self.edges) + 1, u, v)
        self.edges.append(d)
        self._out[u.index - 1].append(d)
        self._in[v.index - 1].append(d)
        if not self.is_directed:
            rev = d.reverse()
            self._out[v.index - 1].append(rev)
            self._in[u.index - 1].append(rev)
        return d

    # --- lookups ---------------------------------------------------------

    def __getitem__(self, key: str) -> Variable:
        return self.vertices[self._ofkey[key] - 1]

    def __contains__(self, key) -> bool:
        return key in self._ofkey

    def __iter__(self):
        return iter(self.vertices)

    def __len__(self):
        return len(self.vertices)

    def vertex(self, index: int) -> Variable:
        if not 1 <= index <= len(self.vertices):
            raise IndexError(f"Vertex index {index} out of range 1..{len(self.vertices)}")
        return self.vertices[index - 1]

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)

    @property
    def num_edges(self) -> int:
        return len(self.edges)

    def keys(self) -> List[str]:
        return [v.key for v in self.vertices]

    def indices(self) -> List[int]:
        return [v.index for v in self.vertices]

    def parameters(self) -> List[Parameter]:
        return [v for v in self.vertices if v.is_parameter]

    def out_edges(self, v: VariableRef) -> List[Dependency]:
        return list(self._out[self._resolve(v).index - 1])

    def in_edges(self, v: VariableRef) -> List[Dependency]:
        return list(self._in[self._resolve(v).index - 1])

    def out_neighbors(self, v: VariableRef) -> List[Variable]:
        return [d.target for d in self.out_edges(v)]

    def in_neighbors(self, v: VariableRef) -> List[Variable]:
        return [d.source for d in self.in_edges(v)]

    def out_degree(self, v: VariableRef) -> int:
        return len(self._out[self._resolve(v).index - 1])

    def in_degree(self, v: VariableRef) -> int:
        return len(self._in[self._resolve(v).index - 1])

    def descendants(self, v: VariableRef) -> List[Variable]:
        """All variables reachable from v, in index order."""
        start = self._resolve(v)
        reached = nx.descendants(self.to_networkx(), start.index)
        return [self.vertices[i - 1] for i in sorted(reached)]

    # --- ordering --------------------------------------------------------

    def to_networkx(self) -> nx.DiGraph:
        """
        Directed networkx graph over vertex indices. Undirected models
        contribute both orientations of every edge.
        """
        g = nx.DiGraph()
        g.add_nodes_from(v.index for v in self.vertices)
        for d in self.edges:
            g.add_edge(d.source.index, d.target.index)
            if not self.is_directed:
                g.add_edge(d.target.index, d.source.index)
        return g

    def topological_order(self) -> List[Variable]:
        """
        Variables ordered so that every edge source precedes its target.
        Ties are broken by index.

        Raises:
            CyclicGraphError: If the graph has a cycle
        """
        g = self.to_networkx()
        try:
            order = list(nx.lexicographical_topological_sort(g, key=lambda i: i))
        except nx.NetworkXUnfeasible:
            cycle = [self.vertices[u - 1].key for u, _ in nx.find_cycle(g)]
            raise CyclicGraphError(
                f"Dependency graph has a cycle through: {', '.join(cycle)}"
            ) from None
        return [self.vertices[i - 1] for i in order]

    # --- export ----------------------------------------------------------

    def to_dot(self, stream: IO[str]) -> None:
        """Write the graph to stream in Graphviz DOT format."""
        keyword, sign = ("digraph", "->") if self.is_directed else ("graph", "--")
        stream.write(f"{keyword} GenericModel {{\n")
        for v in self.vertices:
            stream.write(f"  {v.key} [shape={v.dotshape}]\n")
        for d in self.edges:
            stream.write(f"  {d.source.key} {sign} {d.target.key}\n")
        stream.write("}\n")

    def save_dot(self, filename: str, mode: str = "w") -> None:
        with open(filename, mode) as f:
            self.to_dot(f)

    def __repr__(self):
        kind = "directed" if self.is_directed else "undirected"
        return (f"GenericModel: {self.num_vertices} variables, "
                f"{self.num_edges} dependencies ({kind} graph)")


def build_model(variables: Sequence[Variable],
                dependencies: Iterable[Union[Dependency, Tuple[VariableRef, VariableRef]]] = (),
                **kwargs) -> GenericModel:
    """Build a GenericModel from variables and (source, target) pairs."""
    return GenericModel(variables, dependencies, **kwargs)


def likelihood_model(variables: Sequence[Variable], **kwargs) -> GenericModel:
    """
    Single-parameter model in which every other variable is a source of the
    parameter.

    Raises:
        ConfigurationError: If variables do not contain exactly one Parameter
    """
    params = [v for v in variables if v.is_parameter]
    if len(params) != 1:
        raise ConfigurationError(
            f"likelihood_model needs exactly one Parameter, got {len(params)}"
        )
    others = [v for v in variables if not v.is_parameter]
    return GenericModel(variables, [(v, params[0]) for v in others], **kwargs)
