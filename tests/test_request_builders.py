from snap_solver.llm.adapters import build_request
from snap_solver.llm.types import ImagePayload, ProviderIdentity


IMAGES = [ImagePayload(path="a.png", data="QUFB"), ImagePayload(path="b.png", data="QkJC")]


def test_openai_puts_text_before_image_parts():
    request = build_request(ProviderIdentity.OPENAI, "solve this", IMAGES, model="gpt-4o", system="be brief")

    messages = request.body["messages"]
    assert messages[0] == {"role": "system", "content": "be brief"}
    content = messages[1]["content"]
    assert content[0] == {"type": "text", "text": "solve this"}
    assert [part["image_url"]["url"] for part in content[1:]] == [
        "data:image/png;base64,QUFB",
        "data:image/png;base64,QkJC",
    ]
    assert request.body["max_tokens"] == 4000
    assert request.body["temperature"] == 0.2
    assert request.image_count == 2


def test_gemini_puts_images_before_text():
    request = build_request("gemini", "solve this", IMAGES)

    parts = request.body["contents"][0]["parts"]
    assert parts[0] == {"inlineData": {"mimeType": "image/png", "data": "QUFB"}}
    assert parts[1]["inlineData"]["data"] == "QkJC"
    assert parts[-1] == {"text": "solve this"}
    assert request.body["generationConfig"] == {"temperature": 0.2, "topP": 0.9, "maxOutputTokens": 8192}
    assert request.model == "gemini-2.5-flash"


def test_gemini_prepends_system_text():
    request = build_request("gemini", "question", [], system="rules")
    assert request.body["contents"][0]["parts"] == [{"text": "rules\n\nquestion"}]


def test_anthropic_text_block_then_base64_images():
    request = build_request(ProviderIdentity.ANTHROPIC, "solve this", IMAGES[:1], model="claude-sonnet-4-5")

    content = request.body["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "solve this"}
    assert content[1] == {
        "type": "image",
        "source": {"type": "base64", "media_type": "image/png", "data": "QUFB"},
    }
    assert request.body["max_tokens"] == 4000
    assert request.body["model"] == "claude-sonnet-4-5"


def test_text_only_request_has_no_image_parts():
    request = build_request(ProviderIdentity.OPENAI, "just text")
    assert request.body["messages"][0]["content"] == [{"type": "text", "text": "just text"}]
    assert request.image_count == 0
