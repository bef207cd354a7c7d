"""CLI entry point for lilibet."""

import asyncio
import collections
import logging
import signal
import sys
import threading

import click

from lilibet import __version__


def _load_config():
    from lilibet.config import LilibetConfig
    from lilibet.paths import get_config_path, get_data_dir

    cfg = LilibetConfig.load(get_config_path(get_data_dir()))
    if cfg.storage.data_dir:
        cfg = LilibetConfig.load(get_config_path(get_data_dir(cfg.storage.data_dir)))
    return cfg


def _make_clients(cfg):
    from lilibet.transcriber import TranscriptionClient
    from lilibet.tutor_client import TutorClient

    base_url = cfg.server.resolve_base_url()
    tutor = TutorClient(base_url, timeout=cfg.server.request_timeout)
    transcriber = TranscriptionClient(
        base_url, timeout=cfg.transcription.timeout, retries=cfg.transcription.retries
    )
    return tutor, transcriber


async def _login(tutor, email, password):
    from lilibet.errors import BackendError

    try:
        user = await tutor.login(email, password)
    except BackendError as e:
        raise click.ClickException(f"Login failed: {e}")
    return user


def _read_line(prompt):
    """Blocking prompt; returns None on end of input."""
    try:
        return click.prompt(prompt, default="", show_default=False, prompt_suffix="> ")
    except click.Abort:
        return None


def _echo_tutor(text):
    click.echo(click.style("Lilibet: ", fg="magenta", bold=True) + text)


@click.group()
@click.version_option(version=__version__, prog_name="lilibet")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
def main(verbose):
    """Chat with Lilibet, the AI tutor, by text or voice."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@main.command()
def subjects():
    """List the subjects Lilibet can tutor."""
    from lilibet.chat import SUBJECTS

    for s in SUBJECTS:
        click.echo(f"{s.id:<10} {s.name:<10} {s.description}")


@main.command()
@click.option("--subject", "-s", default="math", help="Subject id (see 'lilibet subjects').")
@click.option("--model", "-m", default=None, type=click.Choice(["openai", "claude"]),
              help="Tutor model.")
@click.option("--voice/--no-voice", default=True, help="Allow /rec voice input.")
@click.option("--speak/--mute", default=None, help="Read tutor replies aloud.")
@click.option("--email", "-e", default=None, help="Log in to save conversations.")
@click.option("--password", default=None, envvar="LILIBET_PASSWORD", help="Account password.")
@click.option("--resume", "resume_id", default=None, help="Continue a saved conversation (needs --email).")
def chat(subject, model, voice, speak, email, password, resume_id):
    """Interactive chat. Commands: /rec, /mute, /unmute, /subject NAME, /resume ID, /quit."""
    from lilibet.backends import create_recorder_factory, create_speech_output
    from lilibet.chat import ChatSession, get_subject
    from lilibet.paths import get_data_dir

    try:
        get_subject(subject)
    except ValueError as e:
        raise click.ClickException(str(e))

    if resume_id and not email:
        raise click.UsageError("--resume needs --email to load saved conversations")

    cfg = _load_config()
    if email and not password:
        password = click.prompt("Password", hide_input=True)

    tutor, transcriber = _make_clients(cfg)
    factory = create_recorder_factory(cfg, get_data_dir(cfg.storage.data_dir)) if voice else None
    session = ChatSession(
        tutor,
        transcriber,
        factory,
        speech=create_speech_output(cfg),
        model=model or cfg.chat.model,
        display_name=cfg.chat.display_name,
        speak_replies=cfg.speech.enabled if speak is None else speak,
    )
    asyncio.run(_chat_loop(session, subject, voice, email, password, resume_id))


async def _chat_loop(session, subject, voice, email, password, resume_id=None):
    try:
        if email:
            user = await _login(session.tutor, email, password)
            session.transcriber.token = session.tutor.token
            click.echo(f"Logged in as {user.display_name or user.email}.")

        if resume_id:
            if not await _resume(session, resume_id):
                raise click.ClickException(f"Could not resume conversation {resume_id}.")
        else:
            _echo_tutor(session.select_subject(subject).text)
        while True:
            line = await asyncio.to_thread(_read_line, "you")
            if line is None:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await _chat_command(session, line, voice):
                    break
                continue
            reply = await session.send(line)
            if reply is not None:
                _echo_tutor(reply.text)
    finally:
        await session.close()


async def _resume(session, conversation_id):
    """Load a saved conversation and replay it. Returns False on failure."""
    from lilibet.errors import LilibetError

    if not session.tutor.is_authenticated:
        click.echo("Log in with --email to resume saved conversations.")
        return False
    try:
        conversation = await session.resume_saved(conversation_id)
    except (LilibetError, ValueError) as e:
        click.echo(str(e))
        return False

    click.echo(f"Resumed {conversation.subject.name} conversation {conversation.conversation_id}.")
    for message in conversation.messages:
        if message.sender == "tutor":
            _echo_tutor(message.text)
        elif message.sender == "user":
            click.echo(f"you> {message.text}")
    return True


async def _chat_command(session, line, voice):
    """Handle one slash command. Returns False when the loop should end."""
    from lilibet.errors import SessionBusy

    cmd, _, arg = line.partition(" ")
    if cmd in ("/quit", "/exit"):
        return False
    if cmd == "/mute":
        session.set_muted(True)
        click.echo("Replies muted.")
    elif cmd == "/unmute":
        session.set_muted(False)
        click.echo("Replies will be read aloud.")
    elif cmd == "/subject":
        try:
            welcome = session.select_subject(arg.strip())
        except ValueError as e:
            click.echo(str(e))
        else:
            _echo_tutor(welcome.text)
    elif cmd == "/resume":
        await _resume(session, arg.strip())
    elif cmd == "/rec":
        if not voice:
            click.echo("Voice input is off (started with --no-voice).")
            return True
        try:
            recording = await session.start_recording()
        except SessionBusy as e:
            click.echo(str(e))
            return True
        if recording.is_terminal:
            click.echo(recording.outcome.message)
            return True
        click.echo(click.style("●", fg="red") + " Recording... press Enter to stop.")
        await asyncio.to_thread(_read_line, "")
        click.echo("Transcribing...")
        outcome = await session.finish_recording(send=False)
        if not outcome.delivered:
            click.echo(outcome.message)
            return True
        click.echo(f"you (voice)> {outcome.text}")
        reply = await session.send(outcome.text)
        if reply is not None:
            _echo_tutor(reply.text)
    else:
        click.echo("Commands: /rec, /mute, /unmute, /subject NAME, /resume ID, /quit")
    return True


@main.command()
@click.option("--seconds", "-t", type=float, default=None,
              help="Stop automatically after this many seconds.")
def record(seconds):
    """Record one utterance and print what was said (Ctrl+C to stop)."""
    from lilibet.backends import create_recorder_factory
    from lilibet.paths import get_data_dir

    cfg = _load_config()
    _, transcriber = _make_clients(cfg)
    factory = create_recorder_factory(cfg, get_data_dir(cfg.storage.data_dir))

    stop_event = threading.Event()
    interrupt_count = 0
    original_handler = signal.getsignal(signal.SIGINT)

    def handle_sigint(sig, frame):
        nonlocal interrupt_count
        interrupt_count += 1
        if interrupt_count >= 2:
            click.echo("\nForced exit.")
            sys.exit(1)
        click.echo("\nStopping recording...")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_sigint)
    try:
        outcome = asyncio.run(_record_once(factory, transcriber, stop_event, seconds))
    finally:
        signal.signal(signal.SIGINT, original_handler)

    if not outcome.delivered:
        raise click.ClickException(outcome.message)
    click.echo(outcome.text)


async def _record_once(factory, transcriber, stop_event, seconds):
    from lilibet.session import RecordingSession

    session = RecordingSession(factory, transcriber)
    try:
        await session.start()
        if session.is_terminal:
            return session.outcome

        recorder = session.recorder
        click.echo("Recording (Ctrl+C to stop)...")
        blocks = " ▁▂▃▄▅▆▇█"
        history = collections.deque([0.0] * 20, maxlen=20)

        while not stop_event.is_set():
            elapsed = recorder.elapsed_seconds
            if seconds is not None and elapsed >= seconds:
                break
            minutes, secs = divmod(int(elapsed), 60)
            lvl = min(recorder.level ** 0.4, 1.0)
            history.append(lvl)
            meter = "".join(blocks[int(v * 8)] for v in history)
            led = click.style("●", fg="red", blink=True)
            click.echo(f"\r  {led} REC {minutes:02d}:{secs:02d}  {meter}", nl=False)
            await asyncio.sleep(0.25)

        click.echo("\nTranscribing...")
        return await session.stop()
    finally:
        session.abandon()
        await transcriber.aclose()


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def transcribe(file):
    """Upload an existing audio file and print the transcription."""
    import mimetypes
    from pathlib import Path

    from lilibet.errors import ErrorCode, user_message
    from lilibet.recorder import AudioPayload

    path = Path(file)
    content = path.read_bytes()
    if not content:
        raise click.ClickException(user_message(ErrorCode.EMPTY_RECORDING))

    if path.suffix.lower() == ".m4a":
        payload = AudioPayload(content, "audio/m4a", path.name, explicit_content_type=True)
    else:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        payload = AudioPayload(content, content_type, path.name)

    cfg = _load_config()
    _, transcriber = _make_clients(cfg)

    async def run():
        async with transcriber:
            return await transcriber.transcribe(payload)

    result = asyncio.run(run())
    if not result.success:
        msg = user_message(result.error)
        if result.detail:
            msg = f"{msg} ({result.detail})"
        raise click.ClickException(msg)
    click.echo(result.text)


@main.command()
@click.argument("text")
def say(text):
    """Read TEXT aloud with the configured voice."""
    from lilibet.backends import create_speech_output
    from lilibet.errors import ErrorCode, user_message
    from lilibet.speech import SpeechOutcome

    speech = create_speech_output(_load_config())
    outcome = asyncio.run(speech.speak(text))
    if outcome is None:
        click.echo("Nothing to say.")
    elif outcome is SpeechOutcome.ERROR:
        raise click.ClickException(user_message(ErrorCode.SPEECH_OUTPUT_ERROR))


@main.command()
@click.option("--subject", "-s", default=None, help="Only show this subject.")
@click.option("--email", "-e", required=True, help="Account email.")
@click.option("--password", default=None, envvar="LILIBET_PASSWORD", help="Account password.")
@click.option("--limit", "-n", default=20, help="Number of entries to show.")
def history(subject, email, password, limit):
    """List saved conversations."""
    from lilibet.errors import BackendError

    if not password:
        password = click.prompt("Password", hide_input=True)
    cfg = _load_config()
    tutor, _ = _make_clients(cfg)

    async def run():
        async with tutor:
            await _login(tutor, email, password)
            try:
                return await tutor.list_conversations(subject)
            except BackendError as e:
                raise click.ClickException(str(e))

    conversations = asyncio.run(run())
    if not conversations:
        click.echo("No saved conversations.")
        return

    click.echo(f"{'ID':<8} {'Subject':<10} {'Updated':<25} {'Title'}")
    click.echo("-" * 70)
    for c in conversations[:limit]:
        updated = str(c.get("updated_at") or c.get("updatedAt") or c.get("created_at") or "")
        click.echo(
            f"{str(c.get('id', '')):<8} {str(c.get('subject', '')):<10} "
            f"{updated[:25]:<25} {c.get('title', '')}"
        )


@main.command()
def devices():
    """List available audio input devices."""
    from lilibet.devices import list_input_devices

    try:
        devs = list_input_devices()
    except OSError as e:
        raise click.ClickException(str(e))
    if not devs:
        click.echo("No audio input devices found.")
        return

    click.echo(f"{'Idx':<5} {'Name':<45} {'Ch':>3} {'Rate':>7} {'Default':>8}  {'Host API'}")
    click.echo("-" * 90)
    for dev in devs:
        default = "*" if dev.is_default else ""
        click.echo(
            f"{dev.index:<5} {dev.name:<45} {dev.max_input_channels:>3} "
            f"{dev.default_samplerate:>7.0f} {default:>8}  {dev.hostapi}"
        )


@main.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--list", "list_all", is_flag=True, help="Show every setting.")
def config(key, value, list_all):
    """Show settings, read one KEY, or set KEY to VALUE."""
    from lilibet.paths import get_config_path, get_data_dir

    cfg = _load_config()

    if list_all or key is None:
        for section, values in cfg.as_dict().items():
            for name, current in values.items():
                click.echo(f"{section}.{name} = {current!r}")
        return

    try:
        if value is None:
            click.echo(cfg.get(key))
            return
        cfg.set(key, value)
    except KeyError as e:
        raise click.ClickException(e.args[0])
    except ValueError as e:
        raise click.ClickException(str(e))

    cfg.save(get_config_path(get_data_dir(cfg.storage.data_dir)))
    click.echo(f"{key} = {cfg.get(key)!r}")
