from types import SimpleNamespace

import pytest

from agentlink_gateway.errors import AgentLinkError, AL_E_LLM_UNAVAILABLE
from agentlink_gateway.llm import GroqChatClient


class _Completions:
    def __init__(self, content):
        self.content = content
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        choices = [] if self.content is None else [SimpleNamespace(message=SimpleNamespace(content=self.content))]
        return SimpleNamespace(choices=choices)


def _sdk(content):
    completions = _Completions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.mark.asyncio
async def test_complete_sends_single_user_message():
    sdk, completions = _sdk("SIGNAL: BUY")
    client = GroqChatClient("gsk_test", client=sdk)

    text = await client.complete("llama-3.1-8b-instant", "prompt text", temperature=0.7, max_tokens=150)

    assert text == "SIGNAL: BUY"
    assert completions.kwargs == {
        "messages": [{"role": "user", "content": "prompt text"}],
        "model": "llama-3.1-8b-instant",
        "temperature": 0.7,
        "max_tokens": 150,
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, ""])
async def test_empty_completion_is_an_error(content):
    sdk, _ = _sdk(content)
    client = GroqChatClient("gsk_test", client=sdk)

    with pytest.raises(AgentLinkError) as exc:
        await client.complete("m", "p", temperature=0.8, max_tokens=150)
    assert exc.value.code == AL_E_LLM_UNAVAILABLE


def test_missing_api_key_is_rejected():
    with pytest.raises(AgentLinkError) as exc:
        GroqChatClient("")
    assert exc.value.code == AL_E_LLM_UNAVAILABLE
