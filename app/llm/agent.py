from typing import Any, Dict, Iterator, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI

from app.config import Settings, settings as default_settings
from app.obs.logger import log_event
from app.obs.metrics import inc_counter
from app.utils.dates import get_current_datetime


def create_chat_model(cfg: Settings = default_settings) -> Optional[ChatOpenAI]:
    """OpenAI-compatible chat model, or None when no key is configured."""
    if not cfg.LLM_API_KEY:
        log_event("llm_disabled", level="WARNING", reason="LLM_API_KEY not set")
        return None
    return ChatOpenAI(
        model=cfg.LLM_MODEL,
        api_key=cfg.LLM_API_KEY,
        base_url=cfg.LLM_BASE_URL,
        temperature=cfg.LLM_TEMPERATURE,
    )


def to_messages(system_prompt: str, history: Sequence[Dict[str, Any]]) -> List[BaseMessage]:
    """Chat history from the browser ({role, content}) -> LangChain messages."""
    messages: List[BaseMessage] = [SystemMessage(system_prompt)]
    for msg in history:
        role = msg.get("role")
        content = msg.get("content") or ""
        if role == "user":
            messages.append(HumanMessage(content))
        elif role == "assistant":
            messages.append(AIMessage(content))
    return messages


def today_str(tz: str = None) -> str:
    return get_current_datetime(tz or default_settings.TZ).strftime("%Y-%m-%d (%A)")


def _run_tool_calls(ai_msg: AIMessage, tools_by_name: Dict[str, BaseTool]) -> List[ToolMessage]:
    results = []
    for call in ai_msg.tool_calls:
        tool = tools_by_name.get(call["name"])
        inc_counter("llm_tool_calls_total", {"tool": call["name"]})
        if tool is None:
            log_event("llm_unknown_tool", level="WARNING", tool=call["name"])
            results.append(ToolMessage(f"Unknown tool: {call['name']}", tool_call_id=call["id"]))
            continue
        log_event("llm_tool_call", tool=call["name"])
        # invoking with the ToolCall itself yields a ToolMessage carrying the call id
        results.append(tool.invoke(call))
    return results


def run_tool_loop(llm, tools: Sequence[BaseTool], messages: List[BaseMessage], max_steps: int = None) -> str:
    """
    Call the model until it answers without tool calls, or until max_steps
    rounds of tools have run. Returns the final text.
    """
    max_steps = max_steps or default_settings.CHAT_MAX_STEPS
    tools_by_name = {t.name: t for t in tools}
    bound = llm.bind_tools(list(tools))

    for step in range(max_steps):
        ai_msg = bound.invoke(messages)
        messages.append(ai_msg)
        if not getattr(ai_msg, "tool_calls", None):
            return ai_msg.content or ""
        messages.extend(_run_tool_calls(ai_msg, tools_by_name))

    log_event("llm_step_limit", level="WARNING", max_steps=max_steps)
    final = llm.invoke(messages)
    return final.content or ""


def stream_tool_loop(llm, tools: Sequence[BaseTool], messages: List[BaseMessage],
                     max_steps: int = None) -> Iterator[str]:
    """Same loop as run_tool_loop but yields text as the model produces it."""
    max_steps = max_steps or default_settings.CHAT_MAX_STEPS
    tools_by_name = {t.name: t for t in tools}
    bound = llm.bind_tools(list(tools))

    for step in range(max_steps):
        gathered = None
        for chunk in bound.stream(messages):
            gathered = chunk if gathered is None else gathered + chunk
            if isinstance(chunk.content, str) and chunk.content:
                yield chunk.content
        if gathered is None:
            return
        messages.append(gathered)
        if not gathered.tool_calls:
            return
        messages.extend(_run_tool_calls(gathered, tools_by_name))
        yield "\n\n"

    log_event("llm_step_limit", level="WARNING", max_steps=max_steps)
    for chunk in llm.stream(messages):
        if isinstance(chunk.content, str) and chunk.content:
            yield chunk.content
