"""CLI entry point for the voice chat client."""

import asyncio
import json
import shutil
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import structlog

from ..config.settings import Settings, settings as default_settings
from ..core.conversation_engine import ConversationEngine, EngineState
from ..errors import VoiceChatError
from ..metrics.collector import MetricsCollector
from ..providers.remote_speech import RemoteSpeechClient
from ..utils.logging import setup_logging


logger = structlog.get_logger()


LEVEL_BARS = " ▁▂▃▄▅▆▇█"

CHAT_HELP = """Commands:
  /voice    start recording, press Enter to stop
  /play N   replay the spoken reply of message N
  /clear    clear the conversation
  /status   show the engine status
  /quit     leave the chat
Anything else is sent as a text message."""


def api_key_option(func):
    return click.option(
        "--api-key",
        envvar="OPENAI_API_KEY",
        help="API key for the remote service (default: $OPENAI_API_KEY)",
    )(func)


def require_api_key(api_key: Optional[str]) -> str:
    if not api_key:
        raise click.UsageError("An API key is required. Pass --api-key or set OPENAI_API_KEY.")
    return api_key


def render_levels(levels) -> str:
    """Render normalized levels as a bar meter."""
    top = len(LEVEL_BARS) - 1
    return "".join(LEVEL_BARS[min(top, int(level * top))] for level in levels)


def print_summary(summary: dict) -> None:
    click.echo("\n📊 Session Summary:")
    click.echo(f"Duration: {summary['session_duration_seconds']:.1f}s")
    click.echo(f"Interactions: {summary['total_interactions']}")
    click.echo(f"Cancelled turns: {summary['cancelled_turns']}")
    if summary["error_count"]:
        by_component = ", ".join(f"{k}={v}" for k, v in summary["errors_by_component"].items())
        click.echo(f"Errors: {summary['error_count']} ({by_component})")
    if summary["total_interactions"] > 0:
        click.echo(f"Avg E2E Latency: {summary['e2e_latency_ms']['avg']:.0f}ms")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--config", type=click.Path(exists=True), help="Path to configuration file")
@click.pass_context
def cli(ctx, debug: bool, config: Optional[str]):
    """Talk to an AI assistant by voice or text."""
    settings = Settings(config_file=config) if config else default_settings

    for issue in settings.validate():
        click.echo(click.style(f"⚠️  {issue}", fg="yellow"), err=True)

    setup_logging(
        debug=debug,
        log_file=settings.logging.file_enabled,
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        file_rotation_mb=settings.logging.file_rotation_mb,
        file_backup_count=settings.logging.file_backup_count,
    )

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["debug"] = debug


def build_engine(api_key: Optional[str], settings: Settings, metrics: MetricsCollector,
                 mock: bool) -> ConversationEngine:
    """Create an engine on real devices, or on in-process fakes in mock mode."""
    if mock:
        from ..mocks import MockAudioCapture, MockAudioPlayback, MockSpeechClient

        return ConversationEngine(
            MockSpeechClient(latency=0.3),
            MockAudioCapture(),
            MockAudioPlayback(),
            metrics=metrics,
        )

    try:
        return ConversationEngine.create(require_api_key(api_key), settings, metrics=metrics)
    except OSError as e:
        logger.error("Audio backend unavailable", error=str(e))
        raise click.ClickException(f"Audio backend unavailable: {e}")


async def read_line() -> Optional[str]:
    """Read one line from stdin without blocking the event loop. None at EOF."""
    line = await asyncio.to_thread(sys.stdin.readline)
    if not line:
        return None
    return line.rstrip("\n")


async def show_meter(engine: ConversationEngine, interval: float) -> None:
    while True:
        meter = render_levels(engine.audio_levels)
        click.echo(f"\r🎙️  {meter:<50}", nl=False)
        await asyncio.sleep(interval)


class ChatSession:
    """Interactive loop on top of a ConversationEngine."""

    def __init__(self, engine: ConversationEngine, level_interval: float = 0.1):
        self.engine = engine
        self.level_interval = level_interval
        self.shown = 0

    def show_new_messages(self) -> None:
        messages = self.engine.messages
        for index, message in enumerate(messages[self.shown:], start=self.shown + 1):
            if message.is_from_user:
                click.echo(click.style(f"[{index}] You: ", fg="cyan", bold=True) + message.content)
            else:
                speaker = "🔊" if message.audio_ref else ""
                click.echo(click.style(f"[{index}] Assistant{speaker}: ", fg="green", bold=True) + message.content)
        self.shown = len(messages)

    def show_failure(self) -> None:
        status = self.engine.status
        if status.is_failed:
            click.echo(click.style(f"❌ Error: {status.reason}", fg="red"))
            self.engine.acknowledge()

    async def voice_turn(self) -> None:
        await self.engine.start_voice_turn()
        if self.engine.status.state is not EngineState.RECORDING:
            self.show_failure()
            return

        click.echo("Recording... press Enter to stop.")
        meter = None
        if sys.stdout.isatty():
            meter = asyncio.get_running_loop().create_task(show_meter(self.engine, self.level_interval))
        try:
            line = await read_line()
        finally:
            if meter is not None:
                meter.cancel()
                click.echo()

        if line is None:
            self.engine.cancel()
            return

        click.echo("Processing...")
        await self.engine.stop_voice_turn()
        self.show_new_messages()
        self.show_failure()

    async def text_turn(self, text: str) -> None:
        if not await self.engine.send_text_turn(text):
            return
        self.show_new_messages()
        self.show_failure()

    async def replay(self, argument: str) -> None:
        messages = self.engine.messages
        try:
            number = int(argument)
        except ValueError:
            number = 0
        if not 1 <= number <= len(messages):
            click.echo(click.style(f"No message number {argument!r}", fg="yellow"))
            return
        message = messages[number - 1]

        if message.audio_ref is None:
            click.echo(click.style("That message has no audio", fg="yellow"))
            return
        await self.engine.play_message_audio(message)
        if self.engine.last_playback_error is not None:
            click.echo(click.style(f"❌ Playback failed: {self.engine.last_playback_error}", fg="red"))

    async def run(self) -> None:
        click.echo(CHAT_HELP + "\n")
        while True:
            click.echo("> ", nl=False)
            line = await read_line()
            if line is None:
                click.echo()
                break

            line = line.strip()
            if not line:
                continue
            command, _, argument = line.partition(" ")

            if command == "/quit":
                break
            elif command == "/voice":
                await self.voice_turn()
            elif command == "/play":
                await self.replay(argument.strip())
            elif command == "/clear":
                if self.engine.clear():
                    self.shown = 0
                    click.echo("Conversation cleared.")
            elif command == "/status":
                click.echo(f"Status: {self.engine.status} | Messages: {len(self.engine.messages)}")
            elif command == "/help":
                click.echo(CHAT_HELP)
            elif command.startswith("/"):
                click.echo(click.style(f"Unknown command {command}, try /help", fg="yellow"))
            else:
                await self.text_turn(line)


@cli.command()
@api_key_option
@click.option("--mock", is_flag=True, help="Run with in-process fakes (no API calls, no audio devices)")
@click.pass_context
def chat(ctx, api_key: Optional[str], mock: bool):
    """Start an interactive voice/text chat."""
    settings = ctx.obj["settings"]
    metrics = MetricsCollector()

    async def session() -> None:
        engine = build_engine(api_key, settings, metrics, mock)
        try:
            await ChatSession(engine, settings.audio.level_interval).run()
        finally:
            await engine.aclose()

    click.echo(click.style("🎙️  Voice chat", fg="green", bold=True))
    if mock:
        click.echo(click.style("⚠️  Running in MOCK mode - no API calls will be made", fg="yellow"))

    try:
        asyncio.run(session())
    except KeyboardInterrupt:
        logger.info("Chat interrupted")
        click.echo("\n\nShutting down...")
    finally:
        print_summary(metrics.get_summary())
        click.echo("\n👋 Goodbye!")


@cli.command()
@api_key_option
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, help="Print the conversation log as JSON")
@click.option("--no-play", is_flag=True, help="Do not play the spoken reply")
@click.pass_context
def ask(ctx, api_key: Optional[str], text: str, as_json: bool, no_play: bool):
    """Send one text message and print (and speak) the reply."""
    settings = ctx.obj["settings"]
    api_key = require_api_key(api_key)

    async def run() -> Tuple[ConversationEngine, bool]:
        playback = None
        if not no_play:
            from ..audio.playback import AudioPlayback

            playback = AudioPlayback(poll_interval=settings.audio.playback_poll_interval)

        engine = ConversationEngine(RemoteSpeechClient.from_settings(api_key, settings), None, playback)
        try:
            accepted = await engine.send_text_turn(text)
            if engine.playback_finished is not None and not engine.status.is_failed:
                await engine.playback_finished
        finally:
            await engine.aclose()
        return engine, accepted

    engine, accepted = asyncio.run(run())
    if not accepted:
        raise click.UsageError("Message text is empty")
    if engine.status.is_failed:
        raise click.ClickException(engine.status.reason)

    if as_json:
        click.echo(json.dumps(engine.log.to_dict(), indent=2, ensure_ascii=False))
    else:
        click.echo(engine.log.last().content)


@cli.command()
@api_key_option
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def transcribe(ctx, api_key: Optional[str], file: str):
    """Transcribe an audio file."""
    settings = ctx.obj["settings"]
    api_key = require_api_key(api_key)

    async def run() -> str:
        async with RemoteSpeechClient.from_settings(api_key, settings) as client:
            return await client.transcribe(file)

    try:
        click.echo(asyncio.run(run()))
    except VoiceChatError as e:
        raise click.ClickException(str(e))


@cli.command()
@api_key_option
@click.argument("text")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Save the speech to this file instead of playing it")
@click.pass_context
def speak(ctx, api_key: Optional[str], text: str, output: Optional[str]):
    """Synthesize speech for TEXT."""
    settings = ctx.obj["settings"]
    api_key = require_api_key(api_key)

    async def run() -> None:
        async with RemoteSpeechClient.from_settings(api_key, settings) as client:
            speech = await client.synthesize_speech(text)

        if output:
            shutil.move(str(speech), output)
            click.echo(f"Saved speech to {output}")
            return

        from ..audio.playback import AudioPlayback

        playback = AudioPlayback(poll_interval=settings.audio.playback_poll_interval)
        try:
            finished = await playback.play(speech)
            await finished
        finally:
            playback.close()
            Path(speech).unlink(missing_ok=True)

    try:
        asyncio.run(run())
    except VoiceChatError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.pass_context
def devices(ctx):
    """List audio input devices and check microphone access."""
    settings = ctx.obj["settings"]
    try:
        import sounddevice as sd

        from ..audio.capture import AudioCapture
    except OSError as e:
        raise click.ClickException(f"Audio backend unavailable: {e}")

    click.echo("🎙️  Input devices")
    click.echo("-" * 50)
    default_input = sd.default.device[0]
    found = False
    for index, device in enumerate(sd.query_devices()):
        if device["max_input_channels"] <= 0:
            continue
        found = True
        marker = "*" if index == default_input else " "
        click.echo(
            f"{marker} [{index}] {device['name']} "
            f"({device['max_input_channels']} ch, {device['default_samplerate']:.0f} Hz)"
        )
    if not found:
        click.echo("No input devices found.")

    capture = AudioCapture(sample_rate=settings.audio.sample_rate)
    granted = asyncio.run(capture.request_permission())
    if granted:
        click.echo(click.style("\n✅ Microphone available", fg="green"))
    else:
        click.echo(click.style("\n❌ Microphone unavailable", fg="red"))


if __name__ == "__main__":
    cli()
