from types import SimpleNamespace

from contiloop.config_loader import GenerationConfig
from contiloop.router import Router, UsageRecord, _build_kwargs


def test_temperature_dropped_for_reasoning_models():
    msgs = [{"role": "user", "content": "hi"}]

    assert "temperature" in _build_kwargs("anthropic/claude-sonnet-4-20250514", msgs, 0.2, 100, None)
    assert "temperature" not in _build_kwargs("openai/o3-mini", msgs, 0.2, 100, None)
    assert "temperature" not in _build_kwargs("gpt-5", msgs, 0.2, 100, None)
    assert _build_kwargs("gpt-4o", msgs, 0.2, 100, [{"type": "function"}])["tools"] == [{"type": "function"}]


def test_usage_record_accumulates():
    usage = UsageRecord()
    usage.record(SimpleNamespace(usage=SimpleNamespace(prompt_tokens=5, completion_tokens=3, total_tokens=8)))
    usage.record(SimpleNamespace(usage=None))

    assert usage.summary() == {"total_tokens": 8, "call_count": 2}


def test_complete_goes_through_litellm(monkeypatch):
    seen = {}

    def fake_completion(**kwargs):
        seen.update(kwargs)
        message = SimpleNamespace(content="done", tool_calls=None)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=2, total_tokens=12),
        )

    monkeypatch.setattr("contiloop.router.litellm.completion", fake_completion)
    router = Router(GenerationConfig(model="anthropic/test-model", max_tokens=256))

    response = router.complete([{"role": "user", "content": "go"}])

    assert response.content == "done"
    assert response.tool_calls == []
    assert response.tokens_used == 12
    assert seen["model"] == "anthropic/test-model"
    assert seen["max_tokens"] == 256
    assert router.usage.call_count == 1
