"""Tests for the remote speech client."""

import asyncio
import json

import httpx
import pytest

from voice_chat.errors import (
    AuthenticationFailedError,
    DecodingFailedError,
    InvalidResponseError,
    InvalidURLError,
    RateLimitExceededError,
    RemoteErrorKind,
    RequestFailedError,
    ServerError,
    UnknownRemoteError,
)
from voice_chat.providers.remote_speech import RemoteSpeechClient


def run_call(handler, call, **client_kwargs):
    """Run ``call(client)`` against a client whose transport is ``handler``."""
    async def go():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as http_client:
            client = RemoteSpeechClient("sk-test", http_client=http_client, **client_kwargs)
            return await call(client)

    return asyncio.run(go())


def completion_body(content="hi there"):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestTranscribe:
    """Test speech-to-text requests."""

    def test_sends_multipart_upload(self, tmp_path):
        audio = tmp_path / "recording.wav"
        audio.write_bytes(b"RIFF-audio-bytes")
        seen = {}

        def handler(request):
            request.read()
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"text": "hello"})

        text = run_call(handler, lambda c: c.transcribe(audio))

        assert text == "hello"
        assert seen["path"] == "/v1/audio/transcriptions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["content_type"].startswith("multipart/form-data")
        assert b'name="model"' in seen["body"]
        assert b"whisper-1" in seen["body"]
        assert b'filename="recording.wav"' in seen["body"]
        assert b"RIFF-audio-bytes" in seen["body"]

    def test_missing_text_field(self, tmp_path):
        audio = tmp_path / "recording.wav"
        audio.write_bytes(b"data")

        def handler(request):
            return httpx.Response(200, json={"transcript": "hello"})

        with pytest.raises(DecodingFailedError):
            run_call(handler, lambda c: c.transcribe(audio))

    def test_rate_limited(self, tmp_path):
        audio = tmp_path / "recording.wav"
        audio.write_bytes(b"data")

        def handler(request):
            return httpx.Response(429, json={"error": {"message": "slow down"}})

        with pytest.raises(RateLimitExceededError) as exc_info:
            run_call(handler, lambda c: c.transcribe(audio))
        assert exc_info.value.status_code == 429
        assert exc_info.value.kind is RemoteErrorKind.RATE_LIMIT_EXCEEDED

    def test_unreadable_audio_file(self, tmp_path):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(RequestFailedError):
            run_call(handler, lambda c: c.transcribe(tmp_path / "missing.wav"))


class TestComplete:
    """Test chat completion requests."""

    def test_request_body(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion_body("hi there"))

        reply = run_call(handler, lambda c: c.complete("hello"))

        assert reply == "hi there"
        assert seen["path"] == "/v1/chat/completions"
        assert seen["body"] == {
            "model": "gpt-3.5-turbo",
            "messages": [{"role": "user", "content": "hello"}],
            "max_tokens": 1024,
        }

    def test_system_prompt_sent_first(self):
        seen = {}

        def handler(request):
            seen["messages"] = json.loads(request.content)["messages"]
            return httpx.Response(200, json=completion_body())

        run_call(handler, lambda c: c.complete("hello"), system_prompt="Be brief.")

        assert seen["messages"][0] == {"role": "system", "content": "Be brief."}
        assert seen["messages"][1] == {"role": "user", "content": "hello"}

    def test_uses_first_choice(self):
        def handler(request):
            body = completion_body("first")
            body["choices"].append({"message": {"role": "assistant", "content": "second"}})
            return httpx.Response(200, json=body)

        assert run_call(handler, lambda c: c.complete("hello")) == "first"

    def test_empty_choices(self):
        def handler(request):
            return httpx.Response(200, json={"choices": []})

        with pytest.raises(InvalidResponseError):
            run_call(handler, lambda c: c.complete("hello"))

    def test_malformed_json(self):
        def handler(request):
            return httpx.Response(200, content=b"not json", headers={"content-type": "application/json"})

        with pytest.raises(DecodingFailedError) as exc_info:
            run_call(handler, lambda c: c.complete("hello"))
        assert exc_info.value.kind is RemoteErrorKind.DECODING_FAILED

    def test_missing_message_content(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"role": "assistant"}}]})

        with pytest.raises(DecodingFailedError):
            run_call(handler, lambda c: c.complete("hello"))

    @pytest.mark.parametrize("status,error_type", [
        (401, AuthenticationFailedError),
        (429, RateLimitExceededError),
        (500, ServerError),
        (503, ServerError),
        (418, UnknownRemoteError),
        (400, UnknownRemoteError),
    ])
    def test_status_mapping(self, status, error_type):
        def handler(request):
            return httpx.Response(status, json={"error": {"message": "nope"}})

        with pytest.raises(error_type) as exc_info:
            run_call(handler, lambda c: c.complete("hello"))
        assert exc_info.value.status_code == status

    def test_unknown_status_message_includes_code(self):
        def handler(request):
            return httpx.Response(418, json={"error": {"message": "I'm a teapot"}})

        with pytest.raises(UnknownRemoteError) as exc_info:
            run_call(handler, lambda c: c.complete("hello"))
        assert "418" in str(exc_info.value)
        assert "I'm a teapot" in str(exc_info.value)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RequestFailedError) as exc_info:
            run_call(handler, lambda c: c.complete("hello"))
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RequestFailedError):
            run_call(handler, lambda c: c.complete("hello"))

    def test_invalid_base_url(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(InvalidURLError):
            run_call(handler, lambda c: c.complete("hello"), base_url="not a url")


class TestSynthesizeSpeech:
    """Test text-to-speech requests."""

    def test_writes_audio_file(self, tmp_path):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"ID3-mp3-bytes")

        path = run_call(handler, lambda c: c.synthesize_speech("hi there"), scratch_dir=tmp_path)

        assert seen["path"] == "/v1/audio/speech"
        assert seen["body"] == {"model": "tts-1", "input": "hi there", "voice": "alloy"}
        assert path.parent == tmp_path
        assert path.suffix == ".mp3"
        assert path.read_bytes() == b"ID3-mp3-bytes"

    def test_each_call_gets_a_new_file(self, tmp_path):
        def handler(request):
            return httpx.Response(200, content=b"audio")

        async def twice(client):
            return await client.synthesize_speech("a"), await client.synthesize_speech("b")

        first, second = run_call(handler, twice, scratch_dir=tmp_path)
        assert first != second

    def test_empty_body(self, tmp_path):
        def handler(request):
            return httpx.Response(200, content=b"")

        with pytest.raises(InvalidResponseError):
            run_call(handler, lambda c: c.synthesize_speech("hi"), scratch_dir=tmp_path)

    def test_server_error(self, tmp_path):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(ServerError):
            run_call(handler, lambda c: c.synthesize_speech("hi"), scratch_dir=tmp_path)
        assert list(tmp_path.iterdir()) == []


class TestClientConfiguration:
    """Test client construction."""

    def test_unknown_voice(self):
        with pytest.raises(ValueError, match="Unknown voice"):
            RemoteSpeechClient("sk-test", voice="robot", http_client=httpx.AsyncClient())

    def test_from_settings(self, tmp_path):
        from voice_chat.config.settings import Settings

        settings = Settings(load_env=False)
        settings.api.voice = "nova"
        settings.api.max_tokens = 256
        settings.audio.scratch_dir = str(tmp_path)

        client = RemoteSpeechClient.from_settings("sk-test", settings, http_client=httpx.AsyncClient())

        assert client.voice == "nova"
        assert client.max_tokens == 256
        assert client.scratch_dir == tmp_path
        assert client.system_prompt is None
