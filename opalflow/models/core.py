"""Core Pydantic models for the workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
)
from pydantic.alias_generators import to_camel


class NodeStatus(str, Enum):
    """Execution status of a single node."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class NodeType(str, Enum):
    """Built-in node kinds."""
    USER_INPUT = "userInput"
    GENERATE = "generate"
    OUTPUT = "output"
    ADD_ASSETS = "addAssets"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class FailureKind(str, Enum):
    """Where in the pipeline a failure originated."""
    STRUCTURAL = "structural"
    READINESS = "readiness"
    HANDLER = "handler"
    ENGINE = "engine"


class OutputFormat(str, Enum):
    """Formatting applied by output nodes."""
    TEXT = "text"
    JSON = "json"
    LIST = "list"


class WireModel(BaseModel):
    """Base for models exchanged with the editing UI (camelCase on the wire)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# Node configurations

class BaseNodeConfig(WireModel):
    """Fields shared by every node configuration."""
    title: str = Field(default="", description="Display title, also used as the variable name downstream")
    description: Optional[str] = Field(None, description="Free-form description")


class UserInputConfig(BaseNodeConfig):
    input_type: str = Field(default="text", description="Expected input type: text, email, number")
    required: bool = Field(default=False, description="Whether a value must be supplied")
    placeholder: Optional[str] = None


class GenerateConfig(BaseNodeConfig):
    prompt_template: str = Field(default="", description="Prompt with {{name}} placeholders")
    model: str = Field(default="", description="Model identifier passed to the generator")
    temperature: float = Field(default=0.7)
    max_tokens: int = Field(default=1000)
    role_description: str = Field(default="", description="System role prepended to the prompt")


class OutputConfig(BaseNodeConfig):
    format: OutputFormat = Field(default=OutputFormat.TEXT, description="How upstream results are combined")
    show_copy_button: bool = True
    show_download_button: bool = True

    @field_validator("format", mode="before")
    @classmethod
    def default_unknown_format(cls, value):
        """Unknown formats fall back to plain text."""
        if value in (None, ""):
            return OutputFormat.TEXT
        if isinstance(value, str) and value not in {f.value for f in OutputFormat}:
            return OutputFormat.TEXT
        return value


class AddAssetsConfig(BaseNodeConfig):
    allowed_file_types: List[str] = Field(default_factory=list)
    max_file_size: int = Field(default=10 * 1024 * 1024, description="Maximum file size in bytes")
    text_input: str = Field(default="")


class CustomConfig(BaseNodeConfig):
    """Configuration for node kinds contributed by the host application."""
    model_config = ConfigDict(extra="allow")


# Nodes

class BaseNode(WireModel):
    """Fields shared by every node kind."""
    id: str = Field(..., description="Unique identifier for the node")
    status: NodeStatus = Field(default=NodeStatus.IDLE, description="Execution status")
    result: Optional[Any] = Field(default=None, description="Result of the last execution")

    @field_validator("id")
    @classmethod
    def validate_id(cls, id_value):
        """Ensure node ID is not blank."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @property
    def title(self) -> str:
        return self.config.title

    def display_name(self) -> str:
        """Title, or a shortened id for untitled nodes."""
        return self.config.title or self.id[:8]


class UserInputNode(BaseNode):
    type: NodeType = NodeType.USER_INPUT
    config: UserInputConfig = Field(default_factory=UserInputConfig)


class GenerateNode(BaseNode):
    type: NodeType = NodeType.GENERATE
    config: GenerateConfig = Field(default_factory=GenerateConfig)


class OutputNode(BaseNode):
    type: NodeType = NodeType.OUTPUT
    config: OutputConfig = Field(default_factory=OutputConfig)


class AddAssetsNode(BaseNode):
    type: NodeType = NodeType.ADD_ASSETS
    config: AddAssetsConfig = Field(default_factory=AddAssetsConfig)


class CustomNode(BaseNode):
    type: str = Field(..., description="Host-defined node type")
    config: CustomConfig = Field(default_factory=CustomConfig)


_BUILTIN_TYPES = {member.value for member in NodeType}


def _node_kind(value: Any) -> str:
    """Discriminate raw or parsed nodes by their type tag."""
    if isinstance(value, dict):
        node_type = value.get("type")
    else:
        node_type = getattr(value, "type", None)
    if isinstance(node_type, NodeType):
        node_type = node_type.value
    return node_type if node_type in _BUILTIN_TYPES else "custom"


Node = Annotated[
    Union[
        Annotated[UserInputNode, Tag(NodeType.USER_INPUT.value)],
        Annotated[GenerateNode, Tag(NodeType.GENERATE.value)],
        Annotated[OutputNode, Tag(NodeType.OUTPUT.value)],
        Annotated[AddAssetsNode, Tag(NodeType.ADD_ASSETS.value)],
        Annotated[CustomNode, Tag("custom")],
    ],
    Discriminator(_node_kind),
]


def node_type_name(node: BaseNode) -> str:
    """Plain string form of a node's type tag."""
    node_type = node.type
    return node_type.value if isinstance(node_type, NodeType) else node_type


class Connection(WireModel):
    """Directed link from one node's output port to another's input port."""
    id: str = Field(..., description="Unique identifier for the connection")
    source_node_id: str = Field(..., description="Upstream node ID")
    target_node_id: str = Field(..., description="Downstream node ID")
    source_port: str = Field(default="output")
    target_port: str = Field(default="input")


class Workflow(WireModel):
    """Snapshot of a workflow graph supplied by the editor at run start."""
    id: str = Field(default="", description="Workflow identifier")
    name: str = Field(default="Untitled Workflow")
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")
        return nodes

    def get_node(self, node_id: str) -> Optional[BaseNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def input_nodes(self, node_id: str) -> List[BaseNode]:
        """Upstream nodes of `node_id`, in connection order."""
        node_map = {node.id: node for node in self.nodes}
        return [
            node_map[conn.source_node_id]
            for conn in self.connections
            if conn.target_node_id == node_id and conn.source_node_id in node_map
        ]

    def output_nodes(self, node_id: str) -> List[BaseNode]:
        """Downstream nodes of `node_id`, in connection order."""
        node_map = {node.id: node for node in self.nodes}
        return [
            node_map[conn.target_node_id]
            for conn in self.connections
            if conn.source_node_id == node_id and conn.target_node_id in node_map
        ]


# Results

class ValidationIssue(BaseModel):
    """Single finding produced by the graph validator."""
    code: str = Field(..., description="Machine-readable issue code")
    message: str = Field(..., description="Human-readable message")
    fatal: bool = Field(True, description="Whether the issue blocks execution")
    node_ids: List[str] = Field(default_factory=list, description="Nodes involved")


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")
    issues: List[ValidationIssue] = Field(default_factory=list, description="Structured findings")

    @property
    def ok(self) -> bool:
        return self.is_valid


class ReadinessResult(BaseModel):
    """Whether a node may be dispatched right now."""
    ready: bool
    reason: Optional[str] = None
    code: Optional[str] = None


class ExecutionResult(BaseModel):
    """Outcome of executing a single node."""
    node_id: str
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    code: Optional[str] = None
    kind: Optional[FailureKind] = None


class WorkflowError(BaseModel):
    """Error recorded against a workflow run."""
    node_id: Optional[str] = Field(None, description="Failing node, None for workflow-level errors")
    message: str
    kind: FailureKind = FailureKind.ENGINE
    code: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ExecutionState(BaseModel):
    """Progress of the current (or last) workflow run."""
    run_id: Optional[str] = None
    status: ExecutionStatusEnum = ExecutionStatusEnum.IDLE
    is_running: bool = False
    current_node_id: Optional[str] = None
    completed_nodes: List[str] = Field(default_factory=list)
    failed_nodes: List[str] = Field(default_factory=list)
    progress: float = Field(0.0, ge=0.0, le=100.0)
    errors: List[WorkflowError] = Field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def last_error(self) -> Optional[WorkflowError]:
        return self.errors[-1] if self.errors else None


class CanExecuteResult(BaseModel):
    can_execute: bool
    reason: Optional[str] = None


class WorkflowExecutionResult(BaseModel):
    """Returned by a full workflow run."""
    success: bool
    status: ExecutionStatusEnum
    final_outputs: Dict[str, Any] = Field(default_factory=dict)
    errors: List[WorkflowError] = Field(default_factory=list)
    execution_state: ExecutionState


class ExecutionSummary(BaseModel):
    total_nodes: int
    completed_nodes: int
    failed_nodes: int
    duration_ms: Optional[float] = None
    has_errors: bool
