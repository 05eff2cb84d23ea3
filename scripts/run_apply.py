import argparse
import logging
import threading
from pathlib import Path

from autoapply.core.config import get_settings
from autoapply.core.logging import setup_logging
from autoapply.services.listings import listing_from_url
from autoapply.services.runtime import build_runtime


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply to job listings through the form pipeline")
    parser.add_argument("--board", help="Board connector to run (default: DEFAULT_BOARD)")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--listings", type=Path, help="JSON file of normalized listings")
    source.add_argument("--url", help="Single job posting URL")
    parser.add_argument("--max", dest="max_applications", type=int, help="Per-run application cap")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", dest="dry_run", action="store_true", default=None)
    mode.add_argument("--submit", dest="dry_run", action="store_false", help="Allow real submits (also needs ALLOW_FINAL_SUBMIT)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--keep-open", action="store_true", help="Leave pages and browser open after the run")
    parser.add_argument(
        "--pause-on-verification",
        action="store_true",
        help="Wait for Enter when a CAPTCHA or verification control is found",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    setup_logging(logging.INFO)

    updates = {}
    if args.dry_run is not None:
        updates["dry_run"] = args.dry_run
    if args.headed:
        updates["browser_headless"] = False
    if args.keep_open:
        updates["keep_open"] = True
    if args.pause_on_verification:
        updates["pause_on_verification"] = True
    settings = get_settings().model_copy(update=updates)

    listings = None
    board = args.board
    if args.url:
        listing = listing_from_url(args.url)
        listings = [listing]
        board = board or listing.source

    runtime = build_runtime(settings, listings=listings, listings_path=args.listings)
    if settings.pause_on_verification:
        threading.Thread(target=_release_on_enter, args=(runtime.verification,), daemon=True).start()

    try:
        summary = runtime.run(board, args.max_applications)
    finally:
        runtime.close()

    print(f"Run {summary.run_id}: state={summary.state.value} applied={summary.applied_count}")
    print(f"Outcomes: {summary.counts or 'none'}; already applied: {summary.already_applied}")
    if summary.last_message:
        print(f"Last message: {summary.last_message}")
    for result in summary.results:
        print(f"  {result.listing_id}: {result.status.value} - {result.message}")
    print(f"Artifacts: {runtime.run_dir}")


def _release_on_enter(signal) -> None:
    while True:
        input()
        if signal.release():
            print("Verification released; continuing.")


if __name__ == "__main__":
    main()
