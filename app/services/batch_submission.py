"""
Concurrent batch submission shared by the API and the client session.

All members of a batch share one batch id and carry their input position as
``batch_index``. Members are submitted concurrently and fail independently.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence

from app.errors import AllSubmissionsFailedError, RenderServiceError
from app.schemas.requests import StartRenderRequest

logger = logging.getLogger(__name__)

SubmitFn = Callable[[StartRenderRequest], Awaitable[str]]


@dataclass
class BatchSubmission:
    """Outcome of a batch submission."""

    batch_id: str
    job_ids: list[str] = field(default_factory=list)
    indexes: dict[str, int] = field(default_factory=dict)  # job id -> batch index
    failures: dict[int, str] = field(default_factory=dict)  # batch index -> error


async def submit_batch(
    requests: Sequence[StartRenderRequest],
    submit: SubmitFn,
    batch_id: Optional[str] = None,
) -> BatchSubmission:
    """
    Submit every request concurrently under one batch id.

    Args:
        requests: Render requests, in batch order
        submit: Coroutine function submitting one request and returning its job id
        batch_id: Batch id to use (a new UUID if not provided)

    Returns:
        BatchSubmission with the ids of the members that started

    Raises:
        AllSubmissionsFailedError: If no member could be started
    """
    batch_id = batch_id or str(uuid.uuid4())
    tagged = [
        request.model_copy(update={"batch_id": batch_id, "batch_index": index})
        for index, request in enumerate(requests)
    ]

    results = await asyncio.gather(
        *(submit(request) for request in tagged),
        return_exceptions=True,
    )

    submission = BatchSubmission(batch_id=batch_id)
    for index, result in enumerate(results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            message = result.message if isinstance(result, RenderServiceError) else str(result)
            logger.warning(f"Batch {batch_id} member {index} failed to start: {message}")
            submission.failures[index] = message
        else:
            submission.job_ids.append(result)
            submission.indexes[result] = index

    if not submission.job_ids:
        raise AllSubmissionsFailedError(submission.failures)

    logger.info(
        f"Batch {batch_id}: {len(submission.job_ids)}/{len(tagged)} renders started"
    )
    return submission
