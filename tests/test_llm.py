import pytest

from recipeflow.errors import ExecutorError
from recipeflow.llm.backends import ImagePart, MockBackend, OpenAIBackend
from recipeflow.llm.factory import get_backend, provider_for
from recipeflow.llm.models import ModelCatalog, Provider, is_provider_configured
from recipeflow.llm import runner


def test_provider_for_catalog_and_prefixes():
    assert provider_for("gpt-4o") == Provider.OPENAI
    assert provider_for("o3-mini") == Provider.OPENAI
    assert provider_for("claude-3-7-sonnet-latest") == Provider.ANTHROPIC
    assert provider_for("gemini-2.0-flash") == Provider.GOOGLE
    assert provider_for("mock-imagen") == Provider.MOCK
    with pytest.raises(ValueError, match="Unknown model"):
        provider_for("llama-3")


def test_get_backend():
    assert isinstance(get_backend("mock"), MockBackend)
    backend = get_backend("gpt-4o-mini")
    assert isinstance(backend, OpenAIBackend)
    assert backend.model_id == "gpt-4o-mini"


def test_catalog_availability(monkeypatch):
    for key in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    catalog = ModelCatalog()

    assert {m.provider for m in catalog.available()} == {Provider.MOCK}
    monkeypatch.setenv("GOOGLE_API_KEY", "k")
    assert is_provider_configured(Provider.GOOGLE)
    assert catalog.supports_image_generation("gemini-2.5-flash-image")
    assert not catalog.supports_vision("gpt-3.5-turbo")
    assert not catalog.supports_vision("unknown")


def test_mock_backend_picks_response():
    backend = MockBackend()

    assert "Amazon Product Listing" in backend.execute_sync("Write an Amazon listing", max_tokens=10).content
    with_image = backend.execute_sync("Describe", max_tokens=10, images=[ImagePart(data="abc")])
    assert with_image.content.startswith("## Image Analysis Results")


def test_image_part_data_url():
    assert ImagePart(data="abc", media_type="image/jpeg").data_url() == "data:image/jpeg;base64,abc"
    assert ImagePart(data="data:image/png;base64,xyz").raw_base64() == "xyz"


class FlakyBackend(MockBackend):
    def __init__(self, failures):
        super().__init__()
        self.failures = list(failures)
        self.calls = 0

    def execute_sync(self, prompt, **kwargs):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return super().execute_sync(prompt, **kwargs)


def test_runner_retries_transient_errors(monkeypatch):
    monkeypatch.setattr(runner.time, "sleep", lambda s: None)
    backend = FlakyBackend([RuntimeError("overloaded"), RuntimeError("rate limited")])

    result, retries = runner.run_llm_call(backend, "hello")

    assert retries == 2
    assert backend.calls == 3
    assert result.content


def test_runner_does_not_retry_configuration_errors(monkeypatch):
    monkeypatch.setattr(runner.time, "sleep", lambda s: None)
    backend = FlakyBackend([RuntimeError("OPENAI_API_KEY not set")])

    with pytest.raises(ExecutorError, match="not set"):
        runner.run_llm_call(backend, "hello")
    assert backend.calls == 1


def test_runner_passes_backend_executor_errors_through(monkeypatch):
    monkeypatch.setattr(runner.time, "sleep", lambda s: None)
    backend = FlakyBackend([ExecutorError("Model mock does not support image generation")])

    with pytest.raises(ExecutorError, match="does not support image generation"):
        runner.run_llm_call(backend, "hello")
    assert backend.calls == 1


def test_runner_gives_up_after_max_retries(monkeypatch):
    monkeypatch.setattr(runner.time, "sleep", lambda s: None)
    monkeypatch.setattr(runner, "MAX_RETRIES", 1)
    backend = FlakyBackend([RuntimeError("overloaded"), RuntimeError("overloaded again")])

    with pytest.raises(ExecutorError, match="Failed after 2 attempts. Last error: overloaded again"):
        runner.run_llm_call(backend, "hello")
    assert backend.calls == 2


def test_missing_openai_key_is_executor_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ExecutorError, match="OPENAI_API_KEY not set"):
        OpenAIBackend("gpt-4o")._get_client()


def test_runner_stops_when_cancelled():
    with pytest.raises(InterruptedError):
        runner.run_llm_call(MockBackend(), "hello", cancellation_check=lambda: True)
