"""Apply prompts to transcripts to produce the output documents."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from smelt_processor.llm.interface import (
    CompletionOptions,
    LLMClient,
    Message,
    TokenUsage,
)
from smelt_processor.models import Prompt
from smelt_processor.utils.errors import ProviderRequestError, SynthesisError

logger = logging.getLogger(__name__)

SYNTHESIS_TEMPERATURE = 0.3
SYNTHESIS_MAX_TOKENS = 8192
SECTION_SEPARATOR = "\n\n---\n\n"


@dataclass
class SynthesisResult:
    prompt_name: str
    content: str
    model: str
    usage: TokenUsage | None = None


def combine_transcripts(transcripts: Sequence[tuple[str, str]]) -> str:
    """Merge (filename, transcript) pairs into one document.

    A single transcript is returned as is. Several get a ``## filename``
    header each and are separated by horizontal rules.
    """
    if not transcripts:
        return ""
    if len(transcripts) == 1:
        return transcripts[0][1]
    return SECTION_SEPARATOR.join(
        f"## {filename}\n\n{transcript}" for filename, transcript in transcripts
    )


def format_combined_results(results: Sequence[SynthesisResult]) -> str:
    return SECTION_SEPARATOR.join(r.content for r in results)


async def synthesize_with_prompt(
    client: LLMClient,
    transcript: str,
    prompt: Prompt,
    options: CompletionOptions | None = None,
) -> SynthesisResult:
    """Run one prompt over a transcript.

    Raises:
        SynthesisError: If the provider rejects the request.
        ProviderError: Credential, quota, rate-limit or availability
            failures, unchanged.
    """
    call_options = dataclasses.replace(
        options or CompletionOptions(),
        temperature=SYNTHESIS_TEMPERATURE,
        max_tokens=SYNTHESIS_MAX_TOKENS,
    )
    messages = [
        Message(role="system", content=prompt.content),
        Message(role="user", content=f"Here is the content to process:\n\n{transcript}"),
    ]
    try:
        result = await client.complete(messages, call_options)
    except ProviderRequestError as exc:
        logger.error("Prompt '%s' rejected by provider: %s", prompt.name, exc)
        raise SynthesisError(f'SYNTHESIS FAILED FOR "{prompt.name}"') from exc

    return SynthesisResult(
        prompt_name=prompt.name,
        content=result.content,
        model=result.model,
        usage=result.usage,
    )


async def synthesize_with_prompts(
    client: LLMClient,
    transcript: str,
    prompts: Sequence[Prompt],
    options: CompletionOptions | None = None,
) -> tuple[str, list[SynthesisResult]]:
    """Apply prompts one after another and join their outputs.

    With no prompts the transcript itself is returned and no call is made.

    Returns:
        The combined document and the individual results.
    """
    if not prompts:
        return transcript, []

    results = []
    for prompt in prompts:
        results.append(await synthesize_with_prompt(client, transcript, prompt, options))
    return format_combined_results(results), results
