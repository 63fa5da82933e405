"""
Tool definitions for Lysis agents.

Every tool the model may call is one variant of a closed tagged union
(discriminated on ``name``). A ToolDispatcher maps each variant type of a
configuration to exactly one handler and refuses to be built when the
mapping is incomplete.

Worker tools:
- create_file, run_command, send_terminal_input, kill_process, read_file, list_files

Manager tools:
- set_project_mode, dispatch_worker, get_project_status
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from lysis.core.types import ProjectMode, ToolInvocation, ToolSpec, WorkerId
from lysis.utils.errors import ToolArgumentError, UnknownToolError
from lysis.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Tool Variants
# =============================================================================


class _ToolArgs(BaseModel):
    """Shared validation settings for tool arguments sent by the model."""

    model_config = ConfigDict(
        coerce_numbers_to_str=True,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class CreateFile(_ToolArgs):
    name: Literal["create_file"] = "create_file"
    path: str = Field(..., min_length=1, description="File path (e.g. src/components/Button.tsx)")
    content: str = Field(..., description="Complete file content.")


class RunCommand(_ToolArgs):
    name: Literal["run_command"] = "run_command"
    command: str = Field(..., min_length=1, description="Command to run (e.g. npm install lodash)")
    in_background: bool = Field(
        default=False,
        description="Run in background without waiting for exit. Returns a process ID.",
    )


class SendTerminalInput(_ToolArgs):
    name: Literal["send_terminal_input"] = "send_terminal_input"
    pid: str = Field(..., description="Process ID from run_command.")
    input: str = Field(..., description='Text to send (use "\\n" for Enter).')


class KillProcess(_ToolArgs):
    name: Literal["kill_process"] = "kill_process"
    pid: str = Field(..., description="Process ID to kill.")


class ReadFile(_ToolArgs):
    name: Literal["read_file"] = "read_file"
    path: str = Field(..., min_length=1, description="Path to file.")


class ListFiles(_ToolArgs):
    name: Literal["list_files"] = "list_files"
    path: str = Field(default=".", description='Directory path (default ".")')


class SetProjectMode(_ToolArgs):
    name: Literal["set_project_mode"] = "set_project_mode"
    mode: ProjectMode = Field(..., description="Mode to set.")


class DispatchWorker(_ToolArgs):
    name: Literal["dispatch_worker"] = "dispatch_worker"
    task: str = Field(..., min_length=1, description="Specific instructions for the worker.")
    worker_id: WorkerId = Field(..., alias="workerId", description="Target worker.")


class GetProjectStatus(_ToolArgs):
    name: Literal["get_project_status"] = "get_project_status"


ToolCall = Annotated[
    Union[
        CreateFile,
        RunCommand,
        SendTerminalInput,
        KillProcess,
        ReadFile,
        ListFiles,
        SetProjectMode,
        DispatchWorker,
        GetProjectStatus,
    ],
    Field(discriminator="name"),
]

_TOOL_CALL_ADAPTER: TypeAdapter[Any] = TypeAdapter(ToolCall)

WORKER_VARIANTS: tuple[type[_ToolArgs], ...] = (
    CreateFile,
    RunCommand,
    SendTerminalInput,
    KillProcess,
    ReadFile,
    ListFiles,
)

MANAGER_VARIANTS: tuple[type[_ToolArgs], ...] = (
    SetProjectMode,
    DispatchWorker,
    GetProjectStatus,
)


def tool_name(variant: type[_ToolArgs]) -> str:
    """The wire name a variant is discriminated on."""
    return variant.model_fields["name"].default


def parse_tool_call(invocation: ToolInvocation) -> Any:
    """
    Validate a model tool invocation into its typed variant.

    Raises:
        UnknownToolError: If the name matches no variant
        ToolArgumentError: If the arguments fail validation
    """
    if invocation.name not in TOOL_SPECS:
        raise UnknownToolError(invocation.name, sorted(TOOL_SPECS))
    try:
        return _TOOL_CALL_ADAPTER.validate_python({**invocation.args, "name": invocation.name})
    except PydanticValidationError as e:
        reason = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or err['loc'][0]}: {err['msg']}"
            for err in e.errors()
        )
        raise ToolArgumentError(invocation.name, reason) from e


# =============================================================================
# Declarations
# =============================================================================


def _object(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "OBJECT", "properties": properties, "required": required}


TOOL_SPECS: dict[str, ToolSpec] = {
    "create_file": ToolSpec(
        name="create_file",
        description="Create or update a file. Always provide the full content.",
        parameters=_object(
            {
                "path": {"type": "STRING", "description": "File path (e.g. src/components/Button.tsx)"},
                "content": {"type": "STRING", "description": "Complete file content."},
            },
            ["path", "content"],
        ),
    ),
    "run_command": ToolSpec(
        name="run_command",
        description="Execute a shell command in the workspace.",
        parameters=_object(
            {
                "command": {"type": "STRING", "description": "Command to run (e.g. npm install lodash)"},
                "in_background": {
                    "type": "BOOLEAN",
                    "description": "Run in background (don't wait for exit). Returns process ID.",
                },
            },
            ["command"],
        ),
    ),
    "send_terminal_input": ToolSpec(
        name="send_terminal_input",
        description="Send text or keys to a running background process.",
        parameters=_object(
            {
                "pid": {"type": "STRING", "description": "Process ID from run_command."},
                "input": {"type": "STRING", "description": 'Text to send (use "\\n" for Enter).'},
            },
            ["pid", "input"],
        ),
    ),
    "kill_process": ToolSpec(
        name="kill_process",
        description="Terminate a running background process.",
        parameters=_object({"pid": {"type": "STRING", "description": "Process ID to kill."}}, ["pid"]),
    ),
    "read_file": ToolSpec(
        name="read_file",
        description="Read file content for debugging.",
        parameters=_object({"path": {"type": "STRING", "description": "Path to file."}}, ["path"]),
    ),
    "list_files": ToolSpec(
        name="list_files",
        description="List directory contents.",
        parameters=_object(
            {"path": {"type": "STRING", "description": 'Directory path (default ".")'}},
            [],
        ),
    ),
    "set_project_mode": ToolSpec(
        name="set_project_mode",
        description="Set the project mode (frontend only or fullstack). Call this first.",
        parameters=_object(
            {
                "mode": {
                    "type": "STRING",
                    "enum": [m.value for m in ProjectMode],
                    "description": "Mode to set.",
                },
            },
            ["mode"],
        ),
    ),
    "dispatch_worker": ToolSpec(
        name="dispatch_worker",
        description="Delegate a coding task to a background worker.",
        parameters=_object(
            {
                "task": {"type": "STRING", "description": "Specific instructions for the worker."},
                "workerId": {
                    "type": "STRING",
                    "enum": [w.value for w in WorkerId],
                    "description": "Target worker.",
                },
            },
            ["task", "workerId"],
        ),
    ),
    "get_project_status": ToolSpec(
        name="get_project_status",
        description="Get the current file structure and worker status.",
        parameters=_object({}, []),
    ),
}

WORKER_TOOLS: list[ToolSpec] = [TOOL_SPECS[tool_name(v)] for v in WORKER_VARIANTS]
MANAGER_TOOLS: list[ToolSpec] = [TOOL_SPECS[tool_name(v)] for v in MANAGER_VARIANTS]


# =============================================================================
# Dispatch
# =============================================================================

Handler = Callable[[Any], Awaitable[str]]


class ToolDispatcher:
    """
    Exhaustive dispatch table from tool variant to handler.

    Example:
        dispatcher = ToolDispatcher(MANAGER_VARIANTS, {
            SetProjectMode: on_mode,
            DispatchWorker: on_dispatch,
            GetProjectStatus: on_status,
        })
        text = await dispatcher.dispatch(invocation)
    """

    def __init__(
        self,
        variants: Sequence[type[_ToolArgs]],
        handlers: dict[type[_ToolArgs], Handler],
    ) -> None:
        missing = [tool_name(v) for v in variants if v not in handlers]
        extra = [tool_name(v) for v in handlers if v not in variants]
        if missing or extra:
            raise ValueError(f"Tool handlers do not match variants (missing={missing}, extra={extra})")
        self._variants = tuple(variants)
        self._handlers = dict(handlers)
        self._names = {tool_name(v) for v in variants}

    @property
    def names(self) -> list[str]:
        return [tool_name(v) for v in self._variants]

    @property
    def specs(self) -> list[ToolSpec]:
        return [TOOL_SPECS[name] for name in self.names]

    def recognizes(self, name: str) -> bool:
        return name in self._names

    async def dispatch(self, invocation: ToolInvocation) -> str:
        """
        Validate and run one invocation, returning its result text.

        Raises:
            UnknownToolError: If this configuration does not recognize the tool
            ToolArgumentError: If the arguments fail validation
        """
        if invocation.name not in self._names:
            raise UnknownToolError(invocation.name, self.names)
        call = parse_tool_call(invocation)
        logger.debug("Dispatching tool", tool=invocation.name, call_id=invocation.id)
        return await self._handlers[type(call)](call)
