"""AgentPacket — the closed set of events emitted while a node executes.

Every packet class carries a ``type`` tag from ``PacketType``. The set of
tags is closed: ``PACKET_CLASSES`` maps each tag to exactly one class and
the module refuses to import if a tag has no class.

Categories:

* lifecycle — start/end of LLM, chain, tool, retriever and chat model calls
* streaming — ``t`` (one token)
* terminal success — ``done``, ``handleAgentEnd``, ``handleChainEnd``
* terminal failure — ``error`` and the ``handle*Error`` callbacks
* human in the loop — ``requestHumanInput``
* presentation only — ``starting``, ``working``, ``idle``
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar


class PacketType(str, Enum):
    HANDLE_LLM_START = "handleLLMStart"
    TOKEN = "t"
    HANDLE_LLM_END = "handleLLMEnd"
    HANDLE_LLM_ERROR = "handleLLMError"
    HANDLE_CHAIN_START = "handleChainStart"
    HANDLE_CHAIN_END = "handleChainEnd"
    HANDLE_CHAIN_ERROR = "handleChainError"
    HANDLE_TOOL_START = "handleToolStart"
    HANDLE_TOOL_END = "handleToolEnd"
    HANDLE_TOOL_ERROR = "handleToolError"
    HANDLE_AGENT_ACTION = "handleAgentAction"
    HANDLE_AGENT_END = "handleAgentEnd"
    HANDLE_AGENT_ERROR = "handleAgentError"
    HANDLE_TEXT = "handleText"
    HANDLE_RETRIEVER_START = "handleRetrieverStart"
    HANDLE_RETRIEVER_END = "handleRetrieverEnd"
    HANDLE_RETRIEVER_ERROR = "handleRetrieverError"
    HANDLE_CHAT_MODEL_START = "handleChatModelStart"
    HANDLE_CHAT_MODEL_END = "handleChatModelEnd"
    DONE = "done"
    ERROR = "error"
    REQUEST_HUMAN_INPUT = "requestHumanInput"
    STARTING = "starting"
    WORKING = "working"
    IDLE = "idle"


class Severity(str, Enum):
    WARN = "warn"
    HUMAN = "human"
    FATAL = "fatal"


PACKET_CLASSES: dict[PacketType, type["AgentPacket"]] = {}


@dataclass(frozen=True)
class AgentPacket:
    type: ClassVar[PacketType]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.type in PACKET_CLASSES:
            raise TypeError(f"Packet type {cls.type.value!r} already bound to {PACKET_CLASSES[cls.type]}")
        PACKET_CLASSES[cls.type] = cls


# lifecycle


@dataclass(frozen=True)
class HandleLLMStart(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_LLM_START


@dataclass(frozen=True)
class HandleLLMEnd(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_LLM_END
    output: str = ""


@dataclass(frozen=True)
class HandleChainStart(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_CHAIN_START


@dataclass(frozen=True)
class HandleToolStart(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_TOOL_START
    tool: str = ""
    input: str = ""


@dataclass(frozen=True)
class HandleToolEnd(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_TOOL_END
    output: str = ""


@dataclass(frozen=True)
class HandleAgentAction(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_AGENT_ACTION
    tool: str = ""
    tool_input: str = ""


@dataclass(frozen=True)
class HandleText(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_TEXT
    text: str = ""


@dataclass(frozen=True)
class HandleRetrieverStart(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_RETRIEVER_START


@dataclass(frozen=True)
class HandleRetrieverEnd(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_RETRIEVER_END


@dataclass(frozen=True)
class HandleChatModelStart(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_CHAT_MODEL_START


@dataclass(frozen=True)
class HandleChatModelEnd(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_CHAT_MODEL_END


# streaming


@dataclass(frozen=True)
class Token(AgentPacket):
    type: ClassVar[PacketType] = PacketType.TOKEN
    t: str = ""


# terminal success


@dataclass(frozen=True)
class Done(AgentPacket):
    type: ClassVar[PacketType] = PacketType.DONE
    value: Any = None


@dataclass(frozen=True)
class HandleAgentEnd(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_AGENT_END
    value: Any = None


@dataclass(frozen=True)
class HandleChainEnd(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_CHAIN_END
    outputs: dict[str, Any] = field(default_factory=dict)


# terminal failure


@dataclass(frozen=True)
class ErrorPacket(AgentPacket):
    type: ClassVar[PacketType] = PacketType.ERROR
    severity: Severity = Severity.WARN
    message: str = ""
    err: Any = None


@dataclass(frozen=True)
class HandleLLMError(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_LLM_ERROR
    err: Any = None


@dataclass(frozen=True)
class HandleChainError(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_CHAIN_ERROR
    err: Any = None


@dataclass(frozen=True)
class HandleToolError(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_TOOL_ERROR
    err: Any = None


@dataclass(frozen=True)
class HandleAgentError(AgentPacket):
    """Synthetic; raised when an agent exhausts its iterations."""

    type: ClassVar[PacketType] = PacketType.HANDLE_AGENT_ERROR
    err: Any = None


@dataclass(frozen=True)
class HandleRetrieverError(AgentPacket):
    type: ClassVar[PacketType] = PacketType.HANDLE_RETRIEVER_ERROR
    err: Any = None


# human in the loop


@dataclass(frozen=True)
class RequestHumanInput(AgentPacket):
    type: ClassVar[PacketType] = PacketType.REQUEST_HUMAN_INPUT
    reason: str = ""


# presentation only


@dataclass(frozen=True)
class Starting(AgentPacket):
    type: ClassVar[PacketType] = PacketType.STARTING
    node_id: str = ""


@dataclass(frozen=True)
class Working(AgentPacket):
    type: ClassVar[PacketType] = PacketType.WORKING
    node_id: str = ""


@dataclass(frozen=True)
class Idle(AgentPacket):
    type: ClassVar[PacketType] = PacketType.IDLE
    node_id: str = ""


_unbound = set(PacketType) - set(PACKET_CLASSES)
if _unbound:
    raise TypeError(f"Packet types without a class: {sorted(t.value for t in _unbound)}")


TERMINAL_SUCCESS_TYPES = frozenset(
    {PacketType.DONE, PacketType.HANDLE_AGENT_END, PacketType.HANDLE_CHAIN_END}
)
TERMINAL_FAILURE_TYPES = frozenset(
    {
        PacketType.ERROR,
        PacketType.HANDLE_LLM_ERROR,
        PacketType.HANDLE_CHAIN_ERROR,
        PacketType.HANDLE_TOOL_ERROR,
        PacketType.HANDLE_AGENT_ERROR,
        PacketType.HANDLE_RETRIEVER_ERROR,
    }
)
FINISHING_TYPES = TERMINAL_SUCCESS_TYPES | TERMINAL_FAILURE_TYPES


def is_finishing(packet_type: PacketType) -> bool:
    return packet_type in FINISHING_TYPES


def find_finish_packet(packets: list[AgentPacket]) -> AgentPacket:
    """Return the last finishing packet, or a synthetic fatal error if there is none."""
    for packet in reversed(packets):
        if is_finishing(packet.type):
            return packet
    return ErrorPacket(
        severity=Severity.FATAL,
        message=f"No result packet found in {len(packets)} packets",
    )


def display(packet: AgentPacket) -> str | None:
    """Short label for a packet, or None for noise not worth showing."""
    if isinstance(packet, HandleAgentAction):
        return packet.tool
    if packet.type in (
        PacketType.HANDLE_TOOL_START,
        PacketType.HANDLE_TOOL_END,
        PacketType.HANDLE_LLM_START,
    ):
        return None
    return packet.type.value


def packet_to_dict(packet: AgentPacket) -> dict[str, Any]:
    data = {f.name: getattr(packet, f.name) for f in fields(packet)}
    data = {k: v for k, v in data.items() if v is not None}
    if "err" in data:
        data["err"] = str(data["err"])
    if isinstance(packet, ErrorPacket):
        data["severity"] = packet.severity.value
    return {"type": packet.type.value, **data}
