import argparse
import asyncio
import logging
import uuid

from gradebook import config
from gradebook.database import AsyncSessionLocal, engine
from gradebook.services.status_diagnostics import (
    diagnose_submission_status,
    fix_submission_status,
)


async def run(repair: bool, submission_id=None):
    async with AsyncSessionLocal() as session:
        report = await diagnose_submission_status(session, submission_id=submission_id)
        print(f"Submissions checked: {report.total}")
        for status, count in sorted(report.by_status.items()):
            print(f"  {status}: {count}")
        if report.invalid_statuses:
            print(f"Invalid statuses: {', '.join(report.invalid_statuses)}")

        if not report.inconsistent:
            print("✅ No inconsistencies found.")
        for entry in report.inconsistent:
            print(f"  {entry.id} [{entry.status}] {entry.issue}")

        if repair and report.inconsistent:
            print("🔧 Repairing submission statuses...")
            result = await fix_submission_status(session)
            print(f"✅ Fixed {result.fixed_count} submissions: {result.details.model_dump()}")
            for unresolved_id in result.unresolved:
                print(f"  ⚠️ needs manual review: {unresolved_id}")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Find series submissions whose status disagrees with their data."
    )
    parser.add_argument("--repair", action="store_true", help="fix what can be fixed")
    parser.add_argument("--submission-id", type=uuid.UUID, help="only check this submission")
    args = parser.parse_args()

    logging.basicConfig(level=config.LOG_LEVEL)
    asyncio.run(run(args.repair, args.submission_id))
