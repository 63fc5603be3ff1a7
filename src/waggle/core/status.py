"""Reduce packet tags to the small status model shown to observers."""

from enum import Enum

from waggle.core.packets import AgentPacket, PacketType


class TaskStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    WAIT = "wait"
    DONE = "done"
    ERROR = "error"


_STATUS_BY_TYPE: dict[PacketType, TaskStatus] = {
    PacketType.DONE: TaskStatus.DONE,
    PacketType.HANDLE_AGENT_END: TaskStatus.DONE,
    PacketType.HANDLE_CHAIN_END: TaskStatus.DONE,
    PacketType.ERROR: TaskStatus.ERROR,
    PacketType.HANDLE_LLM_ERROR: TaskStatus.ERROR,
    PacketType.HANDLE_CHAIN_ERROR: TaskStatus.ERROR,
    PacketType.HANDLE_TOOL_ERROR: TaskStatus.ERROR,
    PacketType.HANDLE_AGENT_ERROR: TaskStatus.ERROR,
    PacketType.HANDLE_RETRIEVER_ERROR: TaskStatus.ERROR,
    PacketType.REQUEST_HUMAN_INPUT: TaskStatus.WAIT,
    PacketType.TOKEN: TaskStatus.WORKING,
    PacketType.HANDLE_LLM_START: TaskStatus.WORKING,
    PacketType.HANDLE_LLM_END: TaskStatus.WORKING,
    PacketType.HANDLE_CHAIN_START: TaskStatus.WORKING,
    PacketType.HANDLE_TOOL_START: TaskStatus.WORKING,
    PacketType.HANDLE_TOOL_END: TaskStatus.WORKING,
    PacketType.HANDLE_AGENT_ACTION: TaskStatus.WORKING,
    PacketType.HANDLE_TEXT: TaskStatus.WORKING,
    PacketType.HANDLE_RETRIEVER_START: TaskStatus.WORKING,
    PacketType.HANDLE_RETRIEVER_END: TaskStatus.WORKING,
    PacketType.HANDLE_CHAT_MODEL_START: TaskStatus.WORKING,
    PacketType.HANDLE_CHAT_MODEL_END: TaskStatus.WORKING,
    PacketType.STARTING: TaskStatus.WORKING,
    PacketType.WORKING: TaskStatus.WORKING,
    PacketType.IDLE: TaskStatus.IDLE,
}

_unmapped = set(PacketType) - set(_STATUS_BY_TYPE)
if _unmapped:
    raise TypeError(f"Packet types without a status: {sorted(t.value for t in _unmapped)}")


def map_packet_type_to_status(packet_type: PacketType | None) -> TaskStatus:
    """Map a packet tag to a status. ``None`` (no packet yet) is idle."""
    if packet_type is None:
        return TaskStatus.IDLE
    return _STATUS_BY_TYPE[PacketType(packet_type)]


def map_packet_to_status(packet: AgentPacket | None) -> TaskStatus:
    return map_packet_type_to_status(packet.type if packet is not None else None)
