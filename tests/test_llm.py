import json

import httpx
import pytest

from commit_manager.exceptions import ModelAPIError
from commit_manager.llm import ModelResponse, ModelToolCall, OpenAICompatibleModel, parse_chat_completion


def _completion(message, finish_reason="stop"):
    return {"choices": [{"message": message, "finish_reason": finish_reason}]}


def test_parse_text_and_tool_calls():
    response = parse_chat_completion(
        _completion(
            {
                "content": "Looking.",
                "tool_calls": [
                    {"id": "c1", "type": "function", "function": {"name": "listTags", "arguments": "{}"}},
                    {"id": "c2", "type": "function", "function": {"arguments": "{}"}},
                ],
            },
            finish_reason="tool_calls",
        )
    )
    assert response.text == "Looking."
    assert [c.name for c in response.tool_calls] == ["listTags"]
    assert response.finish_reason == "tool_calls"


@pytest.mark.parametrize("data", [{}, {"choices": []}, None])
def test_parse_rejects_malformed_bodies(data):
    with pytest.raises(ModelAPIError):
        parse_chat_completion(data)


def test_assistant_message_round_trips_tool_calls():
    response = ModelResponse(tool_calls=(ModelToolCall(id="c1", name="reset", arguments={"mode": "hard"}),))
    message = response.assistant_message()
    assert message["content"] is None
    assert message["tool_calls"][0]["function"] == {"name": "reset", "arguments": '{"mode": "hard"}'}


@pytest.mark.asyncio
async def test_complete_posts_system_prompt_and_tools():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion({"content": "hi"}))

    model = OpenAICompatibleModel(
        api_base="https://llm.test/v1/",
        api_key="sk-test",
        model="tiny",
        transport=httpx.MockTransport(handler),
    )
    tools = [{"name": "listTags", "description": "List tags", "parameters": {"type": "object"}}]
    response = await model.complete("system text", [{"role": "user", "content": "hello"}], tools)

    assert response.text == "hi"
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "tiny"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "system text"}
    assert seen["body"]["tools"] == [{"type": "function", "function": tools[0]}]


@pytest.mark.asyncio
async def test_complete_maps_http_failures():
    model = OpenAICompatibleModel(
        api_base="https://llm.test/v1",
        api_key=None,
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="overloaded")),
    )
    with pytest.raises(ModelAPIError) as excinfo:
        await model.complete("s", [], [])
    assert "500" in str(excinfo.value)
