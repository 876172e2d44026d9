import json

from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import StructuredTool
from pydantic import BaseModel

from app.config import Settings
from app.llm.agent import create_chat_model, run_tool_loop, stream_tool_loop, to_messages


class EchoArgs(BaseModel):
    text: str


def echo_tool(calls):
    def echo(text: str) -> str:
        calls.append(text)
        return f"echo:{text}"
    return StructuredTool.from_function(func=echo, name="echo", description="Echo text back.",
                                        args_schema=EchoArgs)


def tool_call(name, args, call_id="call_1"):
    return {"name": name, "args": args, "id": call_id, "type": "tool_call"}


class ScriptedModel:
    """Stands in for a chat model: replays canned replies and records what it was sent."""

    def __init__(self, replies=None, streams=None):
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.seen = []
        self.bound_tools = None

    def bind_tools(self, tools):
        self.bound_tools = tools
        return self

    def invoke(self, messages):
        self.seen.append(list(messages))
        return self.replies.pop(0)

    def stream(self, messages):
        self.seen.append(list(messages))
        yield from self.streams.pop(0)


def test_no_key_disables_the_model():
    assert create_chat_model(Settings(LLM_API_KEY="")) is None


def test_history_becomes_langchain_messages():
    messages = to_messages("be helpful", [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "system", "content": "ignored"},
    ])
    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage]
    assert messages[1].content == "hi"


def test_tool_round_then_answer():
    calls = []
    model = ScriptedModel(replies=[
        AIMessage("", tool_calls=[tool_call("echo", {"text": "LOS"})]),
        AIMessage("Done: echo:LOS"),
    ])
    messages = to_messages("sys", [{"role": "user", "content": "go"}])

    reply = run_tool_loop(model, [echo_tool(calls)], messages, max_steps=3)

    assert reply == "Done: echo:LOS"
    assert calls == ["LOS"]
    tool_msg = model.seen[1][-1]
    assert isinstance(tool_msg, ToolMessage)
    assert tool_msg.content == "echo:LOS"
    assert tool_msg.tool_call_id == "call_1"


def test_unknown_tool_is_reported_to_the_model():
    model = ScriptedModel(replies=[
        AIMessage("", tool_calls=[tool_call("book_hotel", {})]),
        AIMessage("I can't book hotels."),
    ])
    reply = run_tool_loop(model, [echo_tool([])], to_messages("sys", []), max_steps=3)
    assert reply == "I can't book hotels."
    assert model.seen[1][-1].content == "Unknown tool: book_hotel"


def test_step_limit_forces_a_final_answer():
    looping = [AIMessage("", tool_calls=[tool_call("echo", {"text": str(i)}, f"c{i}")]) for i in range(2)]
    model = ScriptedModel(replies=looping + [AIMessage("Giving up on tools.")])
    calls = []

    reply = run_tool_loop(model, [echo_tool(calls)], to_messages("sys", []), max_steps=2)

    assert reply == "Giving up on tools."
    assert calls == ["0", "1"]


def test_stream_yields_text_across_tool_rounds():
    calls = []
    model = ScriptedModel(streams=[
        [
            AIMessageChunk(content="Let me check. "),
            AIMessageChunk(content="", tool_call_chunks=[
                {"name": "echo", "args": json.dumps({"text": "LHR"}), "id": "call_9", "index": 0}]),
        ],
        [AIMessageChunk(content="Found "), AIMessageChunk(content="it.")],
    ])

    out = list(stream_tool_loop(model, [echo_tool(calls)], to_messages("sys", []), max_steps=3))

    assert "".join(out) == "Let me check. \n\nFound it."
    assert calls == ["LHR"]
    assert isinstance(model.seen[1][-1], ToolMessage)
