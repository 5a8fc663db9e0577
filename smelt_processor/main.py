"""Command-line entry point.

Runs one job over local audio/text files with the in-memory store and
channel, printing every broadcast event to stdout as a JSON line, or runs
a job already stored in Supabase with --job-id. Logs go to stderr so
stdout stays machine-readable.

Usage:
    smelt-process meeting.m4a notes.mp3 --mode combine --prompt summarize
    smelt-process --text "raw notes..." --prompt action_items
    smelt-process --job-id 6f1c...   # run a job already in Supabase
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import os
import sys
import uuid
from typing import TextIO

from smelt_processor.llm.registry import get_llm_client
from smelt_processor.models import InputKind, Job, JobFile, JobMode, JobStage
from smelt_processor.observability.logger import StructuredJsonFormatter
from smelt_processor.pipeline import DEFAULT_SUBSCRIBER_GRACE_SECONDS, JobOrchestrator
from smelt_processor.prompts.cache import PromptCache
from smelt_processor.prompts.defaults import DEFAULT_PROMPTS
from smelt_processor.prompts.loader import PromptLoader
from smelt_processor.realtime.broadcaster import ProgressBroadcaster
from smelt_processor.realtime.interface import ChannelProvider, channel_topic
from smelt_processor.realtime.memory import ChannelEvent, InMemoryChannelProvider
from smelt_processor.realtime.registry import get_channel_provider
from smelt_processor.storage.interface import JobStore
from smelt_processor.storage.memory import InMemoryJobStore
from smelt_processor.storage.supabase_store import SupabaseJobStore

logger = logging.getLogger(__name__)

TEXT_INPUT_FILENAME = "text-input.txt"
LOCAL_USER_ID = "local"
TERMINAL_EVENTS = frozenset({"completed", "failed"})


def _setup_logging(stream: TextIO | None = None) -> None:
    """Configure root logger with structured JSON output."""
    root = logging.getLogger()
    root.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smelt-process",
        description="Turn audio recordings or text into structured documents.",
    )
    parser.add_argument("files", nargs="*", help="Audio files to process")
    parser.add_argument("--text", help="Text to process instead of (or with) audio")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in JobMode],
        default=JobMode.SEPARATE.value,
        help="One output per file, or one combined output",
    )
    parser.add_argument(
        "--prompt",
        action="append",
        default=[],
        choices=sorted(DEFAULT_PROMPTS),
        help="Predefined prompt to apply (repeatable)",
    )
    parser.add_argument(
        "--custom-prompt", metavar="PATH", help="File holding a custom prompt body"
    )
    parser.add_argument("--api-key", help="Provider key (overrides OPENROUTER_API_KEY)")
    parser.add_argument(
        "--job-id", help="Process a job already stored in Supabase instead of local inputs"
    )
    return parser


def build_job(
    store: InMemoryJobStore,
    paths: list[str],
    text: str | None,
    mode: JobMode,
    prompt_names: list[str] | None = None,
    user_prompt_id: str | None = None,
) -> Job:
    """Register the inputs as a pending job in the store."""
    job = Job(
        id=str(uuid.uuid4()),
        mode=mode,
        user_id=LOCAL_USER_ID,
        default_prompt_names=list(prompt_names or []),
        user_prompt_id=user_prompt_id,
    )
    contents: dict[str, bytes] = {}

    for position, path in enumerate(paths):
        with open(path, "rb") as f:
            data = f.read()
        job_file = JobFile(
            id=str(uuid.uuid4()),
            job_id=job.id,
            input_kind=InputKind.AUDIO,
            filename=os.path.basename(path),
            size_bytes=len(data),
            position=position,
            mime_type=mimetypes.guess_type(path)[0] or "",
        )
        job.files.append(job_file)
        contents[job_file.id] = data

    if text:
        data = text.encode("utf-8")
        job_file = JobFile(
            id=str(uuid.uuid4()),
            job_id=job.id,
            input_kind=InputKind.TEXT,
            filename=TEXT_INPUT_FILENAME,
            size_bytes=len(data),
            position=len(job.files),
            mime_type="text/plain",
        )
        job.files.append(job_file)
        contents[job_file.id] = data

    store.add_job(job, contents)
    return job


def build_orchestrator(
    store: JobStore,
    provider: ChannelProvider | None = None,
    prompt_cache: PromptCache | None = None,
    subscriber_grace_seconds: float = 0.0,
    metrics_stream: TextIO | None = None,
) -> JobOrchestrator:
    """Wire an orchestrator from environment configuration.

    BROADCAST_PROVIDER picks the channel backend when none is given
    (default ``memory``) and LLM_PROVIDER the client (default ``openrouter``).
    """
    if provider is None:
        provider = get_channel_provider(os.environ.get("BROADCAST_PROVIDER", "memory"))
    return JobOrchestrator(
        store=store,
        broadcaster=ProgressBroadcaster(provider),
        llm_client=get_llm_client(os.environ.get("LLM_PROVIDER", "openrouter")),
        prompt_loader=PromptLoader(store, prompt_cache),
        subscriber_grace_seconds=subscriber_grace_seconds,
        metrics_stream=metrics_stream,
    )


async def _print_events(queue: asyncio.Queue[ChannelEvent], out: TextIO) -> None:
    while True:
        message = await queue.get()
        print(json.dumps({"event": message.event, **message.payload}), file=out, flush=True)
        if message.event in TERMINAL_EVENTS:
            return


async def run_local(args: argparse.Namespace, out: TextIO | None = None) -> int:
    """Process the inputs named on the command line.

    Returns:
        Exit code: 0 if the job completed, 1 otherwise.
    """
    out = out or sys.stdout
    store = InMemoryJobStore(predefined_prompts=DEFAULT_PROMPTS)
    user_prompt_id = None
    if args.custom_prompt:
        with open(args.custom_prompt, encoding="utf-8") as f:
            store.add_custom_prompt("custom", f.read(), user_id=LOCAL_USER_ID)
        user_prompt_id = "custom"
    job = build_job(
        store,
        args.files,
        args.text,
        JobMode(args.mode),
        prompt_names=args.prompt,
        user_prompt_id=user_prompt_id,
    )
    if args.api_key:
        store.credentials[LOCAL_USER_ID] = args.api_key

    provider = InMemoryChannelProvider()
    queue = provider.subscribe(channel_topic(job.id))
    orchestrator = build_orchestrator(store, provider, metrics_stream=sys.stderr)

    printer = asyncio.create_task(_print_events(queue, out))
    await orchestrator.run(job)
    _, pending = await asyncio.wait([printer], timeout=1.0)
    for task in pending:
        task.cancel()

    final = await store.get_job(job.id)
    return 0 if final.stage is JobStage.COMPLETED else 1


async def run_stored(job_id: str) -> int:
    """Process a job that intake already registered in Supabase.

    Events go out on the configured broadcast provider (default
    ``supabase`` here) so the web client sees them.
    """
    store = SupabaseJobStore()
    provider = get_channel_provider(os.environ.get("BROADCAST_PROVIDER", "supabase"))
    cache = PromptCache()
    try:
        await cache.preload(store)
        orchestrator = build_orchestrator(
            store,
            provider,
            prompt_cache=cache,
            subscriber_grace_seconds=DEFAULT_SUBSCRIBER_GRACE_SECONDS,
        )
        job = await store.get_job(job_id)
        await orchestrator.run(job)
        final = await store.get_job(job_id)
    finally:
        await provider.close()
        await store.close()
    return 0 if final.stage is JobStage.COMPLETED else 1


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, run one job and exit with its status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.job_id and not args.files and not args.text:
        parser.error("provide --job-id, at least one audio file, or --text")

    _setup_logging()
    logger.info("SMELT processor starting")
    if args.job_id:
        sys.exit(asyncio.run(run_stored(args.job_id)))
    sys.exit(asyncio.run(run_local(args)))


if __name__ == "__main__":
    main()
