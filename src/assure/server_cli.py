"""CLI entry point for the Assure spec patcher."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="assure-server",
        description="Assure spec patcher: regulation impact analysis and clause-level spec patching",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database and in-process bus/queues, no Redis required",
    )
    parser.add_argument(
        "--apply-mode",
        choices=["path", "generative"],
        help="How clause diffs are applied (overrides ASSURE_DIFF_APPLY_MODE)",
    )
    parser.add_argument(
        "--patch-workers",
        type=int,
        help="Concurrent spec patch jobs (overrides ASSURE_PATCH_WORKER_CONCURRENCY)",
    )
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Log level")
    args = parser.parse_args(argv)

    # Settings are read at import, so the environment must be set first.
    if args.local:
        os.environ["ASSURE_LOCAL_MODE"] = "1"
    if args.apply_mode:
        os.environ["ASSURE_DIFF_APPLY_MODE"] = args.apply_mode
    if args.patch_workers:
        os.environ["ASSURE_PATCH_WORKER_CONCURRENCY"] = str(args.patch_workers)
    if args.log_level:
        os.environ["ASSURE_LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run("assure.main:app", host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
