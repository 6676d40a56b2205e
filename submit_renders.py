#!/usr/bin/env python3
"""
Command-line client for the RenderGate render API.

Submits one or more renders described in a JSON file, follows them until
they finish and downloads the results.

Usage:
    python submit_renders.py timeline.json                 # Single render (or a list = batch)
    python submit_renders.py timelines.json --no-download  # Only report status
    python submit_renders.py --storage                     # Show storage usage
    python submit_renders.py --cleanup                     # Trigger the stuck-job reaper

The JSON file holds either one render request or a list of them, in the
camelCase shape accepted by POST /api/render/start.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import httpx
from dotenv import load_dotenv

from app.client import CloudRenderSession, RenderApiClient, TrackedJob
from app.errors import RenderServiceError
from app.schemas.requests import StartRenderRequest

# Load .env file
load_dotenv()

# Configuration
BASE_URL = os.getenv("RENDERGATE_URL", "http://localhost:8000")
ACCOUNT_ID = os.getenv("RENDERGATE_ACCOUNT_ID", "local-user")
CRON_SECRET = os.getenv("CRON_SECRET")

# Output directory
OUTPUT_DIR = Path("renders")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("submit_renders")


def load_requests(path: Path) -> list[StartRenderRequest]:
    """Load one render request or a list of them from a JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [data]
    return [StartRenderRequest.model_validate(item) for item in data]


def on_complete(job: TrackedJob):
    print(f"✓ Render {job.id} completed: {job.download_url}")


def on_error(job_id: str, message: str):
    print(f"✗ Render {job_id} failed: {message}")


def on_all_complete(jobs: list[TrackedJob]):
    print(f"Batch finished: {len(jobs)} renders completed")


async def run_renders(args) -> int:
    requests = load_requests(Path(args.file))

    async with RenderApiClient(args.base_url, args.account_id) as api:
        async with CloudRenderSession(
            api,
            on_complete=on_complete,
            on_error=on_error,
            on_all_complete=on_all_complete,
            auto_download=not args.no_download,
            download_dir=args.output_dir,
            poll_interval=args.poll_interval,
        ) as session:
            try:
                if len(requests) == 1:
                    job_id = await session.start_render(requests[0])
                    print(f"Submitted render {job_id}")
                else:
                    submission = await session.start_batch_render(requests)
                    print(
                        f"Submitted batch {submission.batch_id}: "
                        f"{len(submission.job_ids)}/{len(requests)} renders started"
                    )
                    for index, message in submission.failures.items():
                        print(f"  render {index + 1} not started: {message}")
            except RenderServiceError as e:
                print(f"Submission failed ({e.reason}): {e.message}")
                return 1

            await session.wait_until_idle()
            snapshot = await session.snapshot()

    print(
        f"\nDone: {len(snapshot.completed_jobs)} completed, "
        f"{len(snapshot.failed_jobs)} failed"
    )
    return 0 if not snapshot.failed_jobs else 1


async def show_storage(args) -> int:
    async with httpx.AsyncClient(base_url=args.base_url) as client:
        response = await client.get(
            "/api/storage/check-limit", headers={"X-Account-Id": args.account_id}
        )
    print(json.dumps(response.json(), indent=2))
    return 0 if response.is_success else 1


async def trigger_cleanup(args) -> int:
    if not CRON_SECRET:
        print("CRON_SECRET is not set")
        return 1
    async with httpx.AsyncClient(base_url=args.base_url) as client:
        response = await client.post(
            "/api/renders/cleanup", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )
    print(json.dumps(response.json(), indent=2))
    return 0 if response.is_success else 1


def main():
    parser = argparse.ArgumentParser(
        description="Submit renders to RenderGate and wait for the results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("file", nargs="?", help="JSON file with a render request or a list of them")
    parser.add_argument("--base-url", default=BASE_URL, help="RenderGate base URL")
    parser.add_argument("--account-id", default=ACCOUNT_ID, help="Account to submit as")
    parser.add_argument("--output-dir", default=str(OUTPUT_DIR), help="Where to download results")
    parser.add_argument("--no-download", action="store_true", help="Do not download results")
    parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between polls")
    parser.add_argument("--storage", action="store_true", help="Show storage usage and exit")
    parser.add_argument("--cleanup", action="store_true", help="Trigger stuck-job cleanup and exit")
    args = parser.parse_args()

    if args.storage:
        sys.exit(asyncio.run(show_storage(args)))
    if args.cleanup:
        sys.exit(asyncio.run(trigger_cleanup(args)))
    if not args.file:
        parser.error("a render request file is required")

    sys.exit(asyncio.run(run_renders(args)))


if __name__ == "__main__":
    main()
