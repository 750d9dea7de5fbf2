import uuid
from enum import Enum
from typing import Dict, List, Optional, Any, Iterable

from flowwright.errors import StructuralError


class StepKind(str, Enum):
    """Step kinds understood by the interpreter and the synthesizers."""

    # Navigation
    NAVIGATE = "navigate"
    GO_BACK = "goBack"
    GO_FORWARD = "goForward"
    RELOAD = "reload"
    # Mouse
    CLICK = "click"
    DOUBLE_CLICK = "doubleClick"
    RIGHT_CLICK = "rightClick"
    HOVER = "hover"
    DRAG_AND_DROP = "dragAndDrop"
    # Input
    FILL = "fill"
    SELECT = "select"
    CHECK = "check"
    UPLOAD_FILE = "uploadFile"
    FOCUS = "focus"
    BLUR = "blur"
    # Keyboard & scroll
    KEYBOARD = "keyboard"
    SCROLL = "scroll"
    # Waits
    WAIT = "wait"
    WAIT_FOR_HIDDEN = "waitForHidden"
    WAIT_FOR_URL = "waitForURL"
    WAIT_FOR_LOAD_STATE = "waitForLoadState"
    WAIT_FOR_RESPONSE = "waitForResponse"
    WAIT_FOR_REQUEST = "waitForRequest"
    WAIT_FOR_FUNCTION = "waitForFunction"
    # Assertions & get-value
    ASSERTION = "assertion"
    GET_TEXT = "getText"
    GET_ATTRIBUTE = "getAttribute"
    GET_COUNT = "getCount"
    IS_ENABLED = "isEnabled"
    IS_DISABLED = "isDisabled"
    IS_CHECKED = "isChecked"
    IS_VISIBLE = "isVisible"
    # Browser
    NEW_PAGE = "newPage"
    SWITCH_TAB = "switchTab"
    SET_COOKIE = "setCookie"
    LOCAL_STORAGE = "localStorage"
    # Advanced
    SCREENSHOT = "screenshot"
    FRAME_ENTER = "frameEnter"
    FRAME_EXIT = "frameExit"
    DIALOG = "dialog"
    DOWNLOAD = "download"
    NETWORK_INTERCEPT = "networkIntercept"
    CUSTOM_CODE = "customCode"
    # Control flow
    BRANCH = "branch"
    BRANCH_END = "branchEnd"
    LOOP = "loop"
    LOOP_END = "loopEnd"
    # No-op
    COMMENT = "comment"

    @classmethod
    def known(cls, kind: str) -> bool:
        return kind in _KNOWN_KINDS


_KNOWN_KINDS = {k.value for k in StepKind}

# Start kind -> matching end marker kind
PAIRED_KINDS = {
    StepKind.BRANCH.value: StepKind.BRANCH_END.value,
    StepKind.LOOP.value: StepKind.LOOP_END.value,
}
END_KINDS = set(PAIRED_KINDS.values())

# Steps that write into the variable store
GET_VALUE_KINDS = {
    StepKind.GET_TEXT.value,
    StepKind.GET_ATTRIBUTE.value,
    StepKind.GET_COUNT.value,
    StepKind.LOCAL_STORAGE.value,
}

# Edge labels used by the editor's node handles
TRUE_LABEL = "true"
FALSE_LABEL = "false"
LOOP_BODY_LABEL = "loop"
LOOP_EXIT_LABEL = "next"


class StepNode:
    """A typed unit of work in the flow graph."""
    def __init__(
        self,
        node_id: Optional[str] = None,
        kind: str = StepKind.COMMENT.value,
        payload: Optional[Dict[str, Any]] = None,
        pair_id: Optional[str] = None,
        label: str = "",
    ):
        self.id = node_id if node_id else str(uuid.uuid4())
        self.kind = kind.value if isinstance(kind, StepKind) else kind
        self.payload = payload or {}
        self.pair_id = pair_id
        self.label = label or self.kind

    @property
    def is_control_start(self) -> bool:
        return self.kind in PAIRED_KINDS

    @property
    def is_end_marker(self) -> bool:
        return self.kind in END_KINDS

    @property
    def is_known(self) -> bool:
        return StepKind.known(self.kind)

    def __repr__(self):
        return f"<StepNode id={self.id} kind={self.kind} label='{self.label}'>"


class Edge:
    """Represents a connection between two steps."""
    def __init__(
        self,
        source_id: str,
        target_id: str,
        branch_label: Optional[str] = None,
        edge_id: Optional[str] = None,
    ):
        self.id = edge_id
        self.source_id = source_id
        self.target_id = target_id
        self.branch_label = branch_label

    def __repr__(self):
        return f"<Edge {self.source_id} -> {self.target_id} label='{self.branch_label}'>"


class FlowGraph:
    """A flow: step nodes keyed by id (declaration order) plus ordered edges."""
    def __init__(self, name: str = "Flow", metadata: Optional[Dict[str, Any]] = None):
        self.name = name
        self.nodes: Dict[str, StepNode] = {}
        self.edges: List[Edge] = []
        self.metadata = metadata or {}
        self._outgoing: Dict[str, List[Edge]] = {}
        self._incoming: Dict[str, List[Edge]] = {}

    def add_node(self, node: StepNode) -> StepNode:
        if node.id in self.nodes:
            raise StructuralError(f"Node with id {node.id} already exists.")
        self.nodes[node.id] = node
        self._outgoing[node.id] = []
        self._incoming[node.id] = []
        return node

    def add_edge(self, edge: Edge) -> Edge:
        if edge.source_id not in self.nodes:
            raise StructuralError(f"Source node {edge.source_id} does not exist.")
        if edge.target_id not in self.nodes:
            raise StructuralError(f"Target node {edge.target_id} does not exist.")

        for existing in self._outgoing[edge.source_id]:
            if existing.target_id == edge.target_id and existing.branch_label == edge.branch_label:
                return existing

        if edge.id is None:
            edge.id = f"e{len(self.edges)}"
        self.edges.append(edge)
        self._outgoing[edge.source_id].append(edge)
        self._incoming[edge.target_id].append(edge)
        return edge

    def connect(self, source: StepNode, target: StepNode, branch_label: Optional[str] = None) -> Edge:
        return self.add_edge(Edge(source.id, target.id, branch_label=branch_label))

    def get_node(self, node_id: str) -> Optional[StepNode]:
        return self.nodes.get(node_id)

    def outgoing(self, node_id: str) -> List[Edge]:
        """Outgoing edges of a node, in edge-declaration order."""
        return list(self._outgoing.get(node_id, ()))

    def incoming(self, node_id: str) -> List[Edge]:
        return list(self._incoming.get(node_id, ()))

    def successors(self, node_id: str, labels: Optional[Iterable[Optional[str]]] = None) -> List[str]:
        """Target ids of outgoing edges, optionally restricted to the given labels."""
        wanted = set(labels) if labels is not None else None
        return [
            e.target_id for e in self._outgoing.get(node_id, ())
            if wanted is None or e.branch_label in wanted
        ]

    def entry_nodes(self) -> List[StepNode]:
        """Nodes without incoming edges, in declaration order."""
        return [n for n in self.nodes.values() if not self._incoming[n.id]]

    def pair_of(self, node: StepNode) -> Optional[StepNode]:
        """The end marker paired with a branch/loop node, if it exists."""
        if not node.pair_id:
            return None
        return self.nodes.get(node.pair_id)

    def __len__(self):
        return len(self.nodes)

    def __repr__(self):
        return f"<FlowGraph name='{self.name}' nodes={len(self.nodes)} edges={len(self.edges)}>"
