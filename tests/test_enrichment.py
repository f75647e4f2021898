from unittest.mock import patch

from config import Settings
from enrichment import MatchEnrichmentClient, parse_json_array
from entities import Creator, Opportunity
from llm_provider import make_completer


def _client(reply):
    calls = []

    def complete(prompt, *, system="", max_tokens=200, temperature=0.7):
        calls.append({"prompt": prompt, "system": system})
        if isinstance(reply, Exception):
            raise reply
        return reply

    return MatchEnrichmentClient(complete), calls


def test_disabled_client_returns_nothing():
    client = MatchEnrichmentClient(None)
    assert not client.enabled
    assert client.suggest_tags("bio", "art") == []
    assert client.rank_opportunities(Creator(id="c", wallet_address="0x"), [
        Opportunity(id="o", required_tokens=0)
    ]) == []


def test_json_tags():
    client, calls = _client('["Illustration", "Branding", "illustration", "Motion"]')
    assert client.suggest_tags("I draw things", "art") == ["Illustration", "Branding", "Motion"]
    assert "Category: art" in calls[0]["prompt"]


def test_fenced_json_with_trailing_comma():
    client, _ = _client('```json\n["design", "branding",]\n```')
    assert client.suggest_tags("bio", "design") == ["design", "branding"]


def test_tags_capped_at_five():
    client, _ = _client('["a", "b", "c", "d", "e", "f", "g"]')
    assert len(client.suggest_tags("bio", "art")) == 5


def test_comma_separated_answer():
    client, _ = _client("design, illustration, branding")
    assert client.suggest_tags("bio", "art") == ["design", "illustration", "branding"]


def test_prose_yields_no_tags():
    client, _ = _client("I'm sorry, but I need more information about this creator before I can help.")
    assert client.suggest_tags("bio", "art") == []


def test_endpoint_failure_yields_no_tags():
    client, _ = _client(TimeoutError("read timed out"))
    assert client.suggest_tags("bio", "art") == []


def test_rank_follows_model_order():
    opps = [Opportunity(id=i, required_tokens=0, title=i) for i in ("a", "b", "c")]
    profile = Creator(id="c1", wallet_address="0x", category="art", skills=["ink"])
    client, calls = _client('Here you go: ["b", "a", "zzz"]')
    ranked = client.rank_opportunities(profile, opps)
    assert [o.id for o in ranked] == ["b", "a"]
    assert "ID: c" in calls[0]["prompt"]


def test_rank_failure_is_empty():
    client, _ = _client(RuntimeError("500 from upstream"))
    assert client.rank_opportunities(Creator(id="c", wallet_address="0x"),
                                     [Opportunity(id="o", required_tokens=0)]) == []


def test_parse_json_array_variants():
    assert parse_json_array('{"tags": ["x"]}') == ["x"]
    assert parse_json_array("no array here") is None
    assert parse_json_array("[1, 2]") == [1, 2]


def test_make_completer_without_key():
    assert make_completer(Settings(llm_api_key="")) is None
    assert make_completer(Settings(llm_provider="anthropic", anthropic_api_key="")) is None


def test_openai_completer_uses_configured_endpoint():
    settings = Settings(llm_api_key="sk-test", llm_model="openai/gpt-3.5-turbo")
    complete = make_completer(settings)
    with patch("openai.OpenAI") as OpenAI:
        resp = OpenAI.return_value.chat.completions.create.return_value
        resp.choices[0].message.content = ' ["a"] '
        assert complete("hello", system="sys") == '["a"]'

    kwargs = OpenAI.call_args.kwargs
    assert kwargs["base_url"] == settings.llm_base_url
    assert kwargs["timeout"] == settings.enrichment_timeout
    sent = OpenAI.return_value.chat.completions.create.call_args.kwargs
    assert sent["model"] == "openai/gpt-3.5-turbo"
    assert sent["messages"][0] == {"role": "system", "content": "sys"}
