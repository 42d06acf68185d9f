import argparse
import asyncio
import json
import logging
import random

from . import config
from .demo_content import setup_demo_content
from .destinations.base import available_destinations, get_destination
from .job import ImportJob
from .progress import get_progress_store, mark_started, poll_progress
from .rewriter import build_context

LOG = logging.getLogger("demoseed.cli")


def run_import(args) -> dict:
    store = get_progress_store()
    if store.get(args.destination).running and not args.force:
        return {"ok": False, "error": f"import into {args.destination} already running"}

    home_url = config.get_home_url()
    setup_demo_content(home_url)
    context = build_context(home_url, config.get_blog_id(), config.get_network_id())
    destination = get_destination(args.destination)

    mark_started(store, args.destination)
    job = ImportJob(
        destination,
        args.source or config.get_events_log_path(),
        context,
        destination_id=args.destination,
        store=store,
        time_range=args.range,
        batch_size=args.batch_size,
        sleep_seconds=args.sleep,
        rng=random.Random(args.seed) if args.seed is not None else None,
    )
    state = asyncio.run(job.run())
    out = state.to_dict()
    out["ok"] = state.succeeded
    return out


def main(argv=None):
    parser = argparse.ArgumentParser(prog="demoseed.cli")
    sub = parser.add_subparsers(dest="cmd")

    default_range = config.get_time_range()
    if default_range not in config.TIME_RANGES:
        default_range = config.DEFAULT_TIME_RANGE

    imp = sub.add_parser("import")
    imp.add_argument("--range", type=int, choices=config.TIME_RANGES, default=default_range)
    imp.add_argument("--batch-size", type=int, default=config.get_batch_size())
    imp.add_argument("--sleep", type=float, default=config.get_sleep_seconds())
    imp.add_argument("--destination", default=config.get_destination_id())
    imp.add_argument("--source", default=None)
    imp.add_argument("--seed", type=int, default=None)
    imp.add_argument("--force", action="store_true", help="ignore a stale running flag")

    prog = sub.add_parser("progress")
    prog.add_argument("--destination", default=config.get_destination_id())

    sub.add_parser("setup-demo")
    sub.add_parser("destinations")

    args = parser.parse_args(argv)
    if args.cmd == "import":
        if args.batch_size < 1:
            parser.error("--batch-size must be at least 1")
        print(json.dumps(run_import(args), indent=2, sort_keys=True))
    elif args.cmd == "progress":
        print(json.dumps(poll_progress(get_progress_store(), args.destination), sort_keys=True))
    elif args.cmd == "setup-demo":
        print(json.dumps(setup_demo_content(config.get_home_url()), sort_keys=True))
    elif args.cmd == "destinations":
        print(json.dumps(available_destinations()))
    else:
        parser.print_help()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
