"""
Generic tool-calling conversation engine.

A ToolLoop sends a prompt, executes every tool call the model asks for,
feeds the batched results back and repeats until the model stops calling
tools or the loop bound is reached. Reaching the bound is a normal
completion, never an error.

Self-healing: when a response has no tool calls but narrates a fenced
code block, and the configuration knows ``create_file``, one synthetic
``create_file`` call is made from the first block.
"""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from lysis.core.types import (
    ConversationState,
    LoopOutcome,
    LoopStatus,
    ModelRequest,
    ModelResponse,
    ToolInvocation,
    ToolResult,
    ToolSpec,
    Turn,
)
from lysis.keys.recovery import RecoverySuspension
from lysis.utils.logging import LogContext, LoopLogger

ModelCall = Callable[[ModelRequest], Awaitable[ModelResponse]]
Dispatch = Callable[[ToolInvocation], Awaitable[str]]
ToolListener = Callable[[ToolInvocation, ToolResult], None]

FENCED_BLOCK = re.compile(r"```([\w+-]*)\n(.*?)```", re.DOTALL)

# Fence language -> file extension for self-healed files
FENCE_EXTENSIONS: dict[str, str] = {
    "ts": "ts",
    "typescript": "ts",
    "tsx": "tsx",
    "js": "js",
    "javascript": "js",
    "jsx": "jsx",
    "json": "json",
    "html": "html",
    "css": "css",
    "py": "py",
    "python": "py",
    "sh": "sh",
    "bash": "sh",
    "shell": "sh",
    "md": "md",
    "markdown": "md",
    "yaml": "yml",
    "yml": "yml",
}
DEFAULT_EXTENSION = "ts"


@dataclass
class LoopSpec:
    """
    One configuration of the engine.

    Attributes:
        name: Configuration name used in logs (e.g. "manager", "worker1")
        system_instruction: System framing sent with every request
        tools: Declarations of the recognized tools
        max_loops: Maximum model/tool round-trips per run
        heal_dir: Directory for self-healed files
        model: Optional model override
    """

    name: str
    system_instruction: str
    tools: list[ToolSpec] = field(default_factory=list)
    max_loops: int = 10
    heal_dir: str = "."
    model: str | None = None

    @property
    def tool_names(self) -> set[str]:
        return {t.name for t in self.tools}

    @property
    def can_self_heal(self) -> bool:
        return "create_file" in self.tool_names


def heal_path(directory: str, language: str, millis: int) -> str:
    """Heuristic path for a self-healed file: ``<dir>/file_<millis>.<ext>``."""
    ext = FENCE_EXTENSIONS.get(language.lower(), DEFAULT_EXTENSION)
    filename = f"file_{millis}.{ext}"
    directory = directory.strip().rstrip("/")
    if not directory or directory == ".":
        return filename
    return f"{directory}/{filename}"


def synthesize_file_call(text: str, directory: str, millis: int | None = None) -> ToolInvocation | None:
    """Build one synthetic create_file call from the first fenced block, if any."""
    match = FENCED_BLOCK.search(text or "")
    if match is None:
        return None
    language, content = match.group(1), match.group(2)
    stamp = millis if millis is not None else int(time.time() * 1000)
    return ToolInvocation(
        name="create_file",
        args={"path": heal_path(directory, language, stamp), "content": content},
        id=f"auto-fix-{uuid.uuid4().hex[:6]}",
        synthetic=True,
    )


class ToolLoop:
    """
    Bounded model <-> tool conversation driver.

    The dispatch function receives each invocation and returns its result
    text; any exception it raises becomes an ``Error: ...`` result for that
    call, except RecoverySuspension, which pauses the whole run.

    Example:
        loop = ToolLoop(spec, model=gateway.bind(Role.WORKER1), dispatch=dispatcher.dispatch)
        outcome = await loop.run("TASK: build a landing page")
        if outcome.hit_loop_bound:
            ...
    """

    def __init__(
        self,
        spec: LoopSpec,
        model: ModelCall,
        dispatch: Dispatch,
        on_tool: ToolListener | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.spec = spec
        self._model = model
        self._dispatch = dispatch
        self._on_tool = on_tool
        self._clock = clock
        self.logger = LoopLogger(spec.name)

    async def run(
        self,
        prompt: str,
        history: list[Turn] | None = None,
        first_call: ModelCall | None = None,
    ) -> LoopOutcome:
        """
        Drive one conversation run to completion.

        Args:
            prompt: The user message that opens the run
            history: Caller-owned prior turns sent ahead of the prompt
            first_call: Optional model call for the opening turn only
                (e.g. a streaming call)

        Returns:
            LoopOutcome with status COMPLETED or LOOP_BOUND

        Raises:
            RecoverySuspension: If an upstream call exhausted its credentials
            Exception: Any fatal upstream error
        """
        start = time.time()
        state = ConversationState(history=[*(history or []), Turn.user(prompt)])
        prior = len(state.history)
        results: list[ToolResult] = []
        texts: list[str] = []
        model_calls = 0
        status = LoopStatus.LOOP_BOUND

        with LogContext(loop=self.spec.name, run_id=uuid.uuid4().hex[:8]):
            self.logger.log_start(self.spec.max_loops)

            response = await (first_call or self._model)(self._request(state))
            model_calls += 1

            while state.loop_count < self.spec.max_loops:
                state.loop_count += 1
                turn = self._model_turn(response)
                state.history.append(turn)
                if response.text:
                    texts.append(response.text)

                if not turn.tool_calls:
                    status = LoopStatus.COMPLETED
                    break

                state.pending_tool_calls = list(turn.tool_calls)
                self.logger.log_iteration(state.loop_count, len(turn.tool_calls))
                batch = [await self._execute(call) for call in state.pending_tool_calls]
                state.pending_tool_calls = []
                results.extend(batch)
                state.history.append(Turn.results(batch))

                response = await self._model(self._request(state))
                model_calls += 1
            else:
                # Bound reached: keep the last reply in the transcript, unexecuted
                state.history.append(self._model_turn(response, heal=False))
                if response.text:
                    texts.append(response.text)

            duration = time.time() - start
            self.logger.log_complete(status.value, state.loop_count, duration, model_calls=model_calls)

        return LoopOutcome(
            status=status,
            text="\n\n".join(texts).strip(),
            loop_count=state.loop_count,
            turns=state.history[prior:],
            tool_results=results,
            model_calls=model_calls,
            execution_time=duration,
        )

    def _request(self, state: ConversationState) -> ModelRequest:
        return ModelRequest(
            history=list(state.history),
            system_instruction=self.spec.system_instruction,
            tools=list(self.spec.tools),
            model=self.spec.model,
        )

    def _model_turn(self, response: ModelResponse, heal: bool = True) -> Turn:
        """
        Record a model reply, applying self-healing when it called no tools.

        A healed turn drops the provider's raw content so the synthetic
        call is sent back alongside its result.
        """
        calls = list(response.tool_calls)
        raw = response.raw_content
        if heal and not calls and self.spec.can_self_heal:
            healed = synthesize_file_call(response.text, self.spec.heal_dir, int(self._clock() * 1000))
            if healed is not None:
                self.logger.logger.info(
                    "Code block detected, self-healing",
                    loop=self.spec.name,
                    path=healed.args["path"],
                )
                calls = [healed]
                raw = None
        return Turn(role="model", text=response.text, tool_calls=calls, raw=raw)

    async def _execute(self, call: ToolInvocation) -> ToolResult:
        try:
            text = await self._dispatch(call)
            result = ToolResult(name=call.name, result_text=text, call_id=call.id)
        except RecoverySuspension:
            raise
        except Exception as e:
            self.logger.logger.warning(
                "Tool failed",
                loop=self.spec.name,
                tool=call.name,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            result = ToolResult(name=call.name, result_text=f"Error: {e}", call_id=call.id, is_error=True)
        if self._on_tool is not None:
            self._on_tool(call, result)
        return result
