"""
Tool Executor Base

Every capability the agent can invoke is a ToolExecutor: a flat pydantic
input model advertised to Gemini, plus an async `execute` that returns a
ToolResult and a StateDelta. Executors only read the state view they are
given; the orchestration loop applies the delta.
"""

from abc import ABC, abstractmethod
from typing import Tuple, Type

from pydantic import BaseModel

from brandforge.models.schemas import StateDelta, ToolResult
from brandforge.models.state import AgentStateView


class ToolExecutor(ABC):
    """Abstract tool executor."""

    name: str
    description: str
    input_model: Type[BaseModel]

    # AgentState fields this tool reads / asks to write (documentation only)
    reads: Tuple[str, ...] = ()
    writes: Tuple[str, ...] = ()

    @abstractmethod
    async def execute(self, args: BaseModel, state: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        """Run the tool against a read-only view of the agent state."""
        raise NotImplementedError
