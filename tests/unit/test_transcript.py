"""Unit tests for the conversation transcript."""
import pytest

from callrelay.services.agent.transcript import (
    ConversationTranscript,
    TranscriptPairingError,
    TranscriptToolCall,
)


@pytest.fixture
def transcript():
    transcript = ConversationTranscript()
    transcript.append("system", "You are calling a pharmacy.")
    return transcript


class TestConversationTranscript:
    """Test transcript ordering and pairing."""

    def test_tool_exchange_is_paired(self, transcript):
        transcript.append("user", "Hello?")
        call = TranscriptToolCall(id="call_1", name="status-update", arguments="{}")
        transcript.append_tool_exchange(call, {"Status": "ready"})

        assert transcript.entries[-2].role == "assistant"
        assert transcript.entries[-2].tool_calls[0].id == "call_1"
        assert transcript.entries[-1].role == "tool"
        assert transcript.entries[-1].tool_call_id == "call_1"
        assert transcript.entries[-1].content == '{"Status": "ready"}'
        assert transcript.is_paired()

    def test_orphan_tool_result_rejected(self, transcript):
        transcript.append("user", "Hello?")

        with pytest.raises(TranscriptPairingError):
            transcript.append_tool_result("call_1", "{}")

    def test_mismatched_tool_id_rejected(self, transcript):
        call = TranscriptToolCall(id="call_1", name="end-call", arguments="{}")
        transcript.append_tool_exchange(call, "{}")

        with pytest.raises(TranscriptPairingError):
            transcript.append_tool_result("call_2", "{}")

    def test_tool_role_not_appendable_directly(self, transcript):
        with pytest.raises(ValueError):
            transcript.append("tool", "{}")

    def test_openai_format(self, transcript):
        call = TranscriptToolCall(id="call_1", name="send-dtmf", arguments='{"dtmfDigit": "2"}')
        transcript.append_tool_exchange(call, "{}", content="One moment.")
        messages = transcript.to_openai()

        assert messages[0] == {"role": "system", "content": "You are calling a pharmacy."}
        assert messages[1]["tool_calls"][0]["function"] == {
            "name": "send-dtmf",
            "arguments": '{"dtmfDigit": "2"}',
        }
        assert messages[1]["content"] == "One moment."
        assert messages[2] == {"role": "tool", "content": "{}", "tool_call_id": "call_1"}

    def test_transcript_text_has_spoken_lines_only(self, transcript):
        transcript.append("user", "City Pharmacy, how can I help?")
        transcript.append("assistant", "Hi, I'm calling about a prescription.")
        call = TranscriptToolCall(id="call_1", name="status-update", arguments="{}")
        transcript.append_tool_exchange(call, "{}")

        assert transcript.get_transcript_text() == (
            "Callee: City Pharmacy, how can I help?\n"
            "Agent: Hi, I'm calling about a prescription."
        )
