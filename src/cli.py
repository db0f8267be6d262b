import argparse
import logging
import os
import sys
import uuid

from env_compat import EVENT_LOG_ENV, THREADS_ENV, VERBOSE_ENV, env_int, env_truthy
from run_json_logging import setup_logging_context
from runner.coordinator import make_coordinator
from runner.orchestrator import run_json


def build_parser():
    parser = argparse.ArgumentParser(
        prog="pyscf-json",
        description="Run a periodic DFT calculation described by a JSON input file.",
    )
    parser.add_argument("input_file", help="Path to the JSON job description.")
    parser.add_argument(
        "--mpi",
        action="store_true",
        help="Coordinate the processes of an MPI launch (requires mpi4py).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help=f"Enable debug logging (default: ${VERBOSE_ENV}).",
    )
    parser.add_argument(
        "--extra-output",
        action="append",
        default=[],
        metavar="FILE",
        help="Additional file to list in the output manifest (repeatable).",
    )
    return parser


def log_path_for(input_file):
    stem = os.path.splitext(os.path.basename(input_file))[0]
    return stem + ".log"


def main(argv=None):
    args = build_parser().parse_args(argv)
    verbose = env_truthy(VERBOSE_ENV) if args.verbose is None else args.verbose
    coordinator = make_coordinator(args.mpi)
    log_path = log_path_for(args.input_file)
    run_id = uuid.uuid4().hex[:8]
    event_log_path = None
    if env_truthy(EVENT_LOG_ENV):
        event_log_path = os.path.splitext(log_path)[0] + ".events.jsonl"

    with setup_logging_context(
        log_path,
        verbose,
        enabled=coordinator.is_coordinator,
        run_id=run_id,
        event_log_path=event_log_path,
    ):
        try:
            output_files = run_json(
                args.input_file,
                extra_output_files=[log_path, *args.extra_output],
                coordinator=coordinator,
                threads=env_int(THREADS_ENV),
            )
        except Exception as exc:
            logging.getLogger(__name__).exception("pyscf-json failed: %s", exc)
            if coordinator.size > 1:
                coordinator.abort(1)
            return 1

    if coordinator.is_coordinator:
        for output_file in output_files:
            print(output_file)
    return 0


__all__ = ["build_parser", "log_path_for", "main"]


if __name__ == "__main__":
    sys.exit(main())
