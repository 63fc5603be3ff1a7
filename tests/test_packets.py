"""Tests for the packet protocol and the status mapper."""

import pytest

from waggle.core.packets import (
    FINISHING_TYPES,
    PACKET_CLASSES,
    Done,
    ErrorPacket,
    HandleAgentAction,
    HandleAgentEnd,
    HandleChainEnd,
    HandleLLMError,
    HandleLLMStart,
    HandleToolError,
    HandleToolStart,
    PacketType,
    RequestHumanInput,
    Severity,
    Token,
    display,
    find_finish_packet,
    is_finishing,
    packet_to_dict,
)
from waggle.core.status import TaskStatus, map_packet_to_status, map_packet_type_to_status


class TestClosedPacketSet:
    def test_every_type_has_one_class(self):
        assert set(PACKET_CLASSES) == set(PacketType)
        for packet_type, cls in PACKET_CLASSES.items():
            assert cls.type is packet_type

    def test_every_type_has_a_status(self):
        for packet_type in PacketType:
            assert isinstance(map_packet_type_to_status(packet_type), TaskStatus)

    def test_finishing_set(self):
        assert FINISHING_TYPES == {
            PacketType.DONE,
            PacketType.HANDLE_AGENT_END,
            PacketType.HANDLE_CHAIN_END,
            PacketType.ERROR,
            PacketType.HANDLE_LLM_ERROR,
            PacketType.HANDLE_CHAIN_ERROR,
            PacketType.HANDLE_TOOL_ERROR,
            PacketType.HANDLE_AGENT_ERROR,
            PacketType.HANDLE_RETRIEVER_ERROR,
        }

    def test_tags_use_wire_names(self):
        assert Token(t="x").type.value == "t"
        assert HandleAgentEnd(value="x").type.value == "handleAgentEnd"
        assert RequestHumanInput(reason="r").type.value == "requestHumanInput"


class TestFindFinishPacket:
    def test_last_finishing_packet_wins(self):
        packets = [HandleLLMStart(), Token(t="a"), Token(t="b"), HandleAgentEnd(value="X")]
        assert find_finish_packet(packets) == HandleAgentEnd(value="X")

    def test_later_success_overrides_earlier_error(self):
        packets = [HandleToolError(err="timeout"), Token(t="a"), Done(value="ok")]
        assert find_finish_packet(packets) == Done(value="ok")

    def test_non_finishing_tail_is_ignored(self):
        packets = [Done(value="ok"), Token(t="trailing")]
        assert find_finish_packet(packets) == Done(value="ok")

    def test_missing_finish_packet_is_synthesized(self):
        finish = find_finish_packet([HandleToolStart(tool="search", input="q")])
        assert isinstance(finish, ErrorPacket)
        assert finish.severity is Severity.FATAL
        assert "1 packets" in finish.message

    def test_empty_stream(self):
        finish = find_finish_packet([])
        assert isinstance(finish, ErrorPacket)
        assert finish.severity is Severity.FATAL

    def test_is_finishing(self):
        assert is_finishing(PacketType.DONE)
        assert is_finishing(PacketType.HANDLE_LLM_ERROR)
        assert not is_finishing(PacketType.REQUEST_HUMAN_INPUT)
        assert not is_finishing(PacketType.TOKEN)


class TestStatusMapper:
    def test_agent_run_sequence(self):
        packets = [HandleLLMStart(), Token(t="a"), Token(t="b"), HandleAgentEnd(value="X")]
        assert [map_packet_to_status(p) for p in packets] == [
            TaskStatus.WORKING,
            TaskStatus.WORKING,
            TaskStatus.WORKING,
            TaskStatus.DONE,
        ]

    def test_human_input_waits(self):
        assert map_packet_to_status(RequestHumanInput(reason="need clarification")) is TaskStatus.WAIT

    @pytest.mark.parametrize(
        "packet,status",
        [
            (Done(value="x"), TaskStatus.DONE),
            (HandleChainEnd(outputs={"a": 1}), TaskStatus.DONE),
            (ErrorPacket(severity=Severity.WARN, message="m"), TaskStatus.ERROR),
            (HandleLLMError(err="e"), TaskStatus.ERROR),
            (HandleAgentAction(tool="search"), TaskStatus.WORKING),
        ],
    )
    def test_categories(self, packet, status):
        assert map_packet_to_status(packet) is status

    def test_no_packet_is_idle(self):
        assert map_packet_to_status(None) is TaskStatus.IDLE
        assert map_packet_type_to_status(PacketType.IDLE) is TaskStatus.IDLE

    def test_accepts_raw_tag_strings(self):
        assert map_packet_type_to_status("handleAgentEnd") is TaskStatus.DONE


class TestDisplay:
    def test_agent_action_shows_tool(self):
        assert display(HandleAgentAction(tool="web_search", tool_input="bees")) == "web_search"

    def test_start_noise_hidden(self):
        assert display(HandleLLMStart()) is None
        assert display(HandleToolStart(tool="x")) is None

    def test_default_is_tag(self):
        assert display(Done(value="x")) == "done"


class TestPacketToDict:
    def test_error_packet(self):
        data = packet_to_dict(ErrorPacket(severity=Severity.HUMAN, message="?", err=ValueError("bad")))
        assert data == {"type": "error", "severity": "human", "message": "?", "err": "bad"}

    def test_token(self):
        assert packet_to_dict(Token(t="hi")) == {"type": "t", "t": "hi"}
