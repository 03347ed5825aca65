"""
Drives one generation call through a StreamIngester
"""

import inspect
from typing import Callable, List, Optional, Tuple

from forgeloop.core.logging_config import logger
from forgeloop.modules.collaborators import GenerationClient, Message
from forgeloop.modules.orchestrator.cancellation import CancellationToken
from forgeloop.modules.protocol.stream_ingester import StreamIngester, StreamPreview


PreviewCallback = Callable[[StreamPreview], None]


async def collect_response(
    generator: GenerationClient,
    messages: List[Message],
    cancel_token: Optional[CancellationToken] = None,
    on_preview: Optional[PreviewCallback] = None,
) -> Tuple[str, bool]:
    """
    Run the generator and gather its output.

    Streams are checked for cancellation between fragments; a cancelled
    stream is closed early and reported as aborted.

    Returns:
        (final text, aborted)
    """
    ingester = StreamIngester()
    output = generator.generate(messages)
    if inspect.isawaitable(output):
        output = await output

    if isinstance(output, str):
        ingester.append(output)
        return ingester.finalize()

    aborted = False
    try:
        async for fragment in output:
            if cancel_token is not None and cancel_token.cancelled:
                aborted = True
                break
            ingester.append(fragment)
            if on_preview is not None:
                on_preview(ingester.preview())
    finally:
        if aborted and hasattr(output, "aclose"):
            await output.aclose()

    text, aborted = ingester.finalize(aborted=aborted)
    logger.debug(
        f"[Generation] Received {ingester.fragment_count} fragment(s), {len(text)} chars"
        + (" (aborted)" if aborted else "")
    )
    return text, aborted
