#!/usr/bin/env python3
"""
Run a single deadline sweep across every tenant and print the report.

Intended for cron or manual use when the in-process sweeper is disabled (SWEEPER_ENABLED=false).

Usage:
    python scripts/run_deadline_sweep.py
    python scripts/run_deadline_sweep.py --org-id acme
"""

from __future__ import annotations

import argparse
import asyncio
import json

from loan_review.api.deps import TenantContext
from loan_review.core.clock import system_clock
from loan_review.core.logging import configure_logging
from loan_review.db.session import AsyncSessionLocal, engine
from loan_review.services import deadline_sweeper


async def main(org_id: str | None) -> None:
    configure_logging()
    try:
        if org_id:
            async with AsyncSessionLocal() as db:
                report = await deadline_sweeper.sweep(
                    db, TenantContext(org_id=org_id), now=system_clock.now()
                )
        else:
            report = await deadline_sweeper.run_sweep_once(AsyncSessionLocal)
    finally:
        await engine.dispose()
    print(json.dumps(report.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--org-id", default=None, help="Sweep a single tenant only")
    args = parser.parse_args()
    asyncio.run(main(args.org_id))
