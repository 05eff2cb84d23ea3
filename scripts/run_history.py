import argparse
import json

from autoapply.core.config import get_settings
from autoapply.services.run_log import list_runs, run_details


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Summarize past runs from their audit logs")
    parser.add_argument("--run", dest="run_id", help="Show per-listing history for one run")
    parser.add_argument("--listing", dest="listing_id", help="With --run, print one listing's events")
    parser.add_argument("--limit", type=int, default=20)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    if not args.run_id:
        for summary in list_runs(settings.runs_dir, limit=args.limit):
            print(
                f"{summary.run_id} board={summary.board} dry_run={summary.dry_run} "
                f"attempts={summary.attempts} skipped={summary.skipped} errors={summary.errors} "
                f"statuses={summary.statuses}"
            )
        return

    histories = run_details(settings.runs_dir / args.run_id)
    if args.listing_id:
        history = histories.get(args.listing_id)
        if history is None:
            raise SystemExit(f"Listing {args.listing_id} not found in run {args.run_id}")
        for event in history.events:
            print(json.dumps(event.model_dump(mode="json", exclude_none=True)))
        return

    for history in histories.values():
        print(
            f"{history.listing_id} [{history.apply_type}] {history.title or ''} @ {history.company or ''}: "
            f"status={history.status} reason={history.reason} "
            f"submit={history.submit_state} policy={history.submit_policy} ({history.submit_policy_reason})"
        )


if __name__ == "__main__":
    main()
