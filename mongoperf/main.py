from __future__ import annotations

import argparse
import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import Mapping

from . import __version__
from .cancellation import CancellationSupervisor, CancellationToken
from .config import ScenarioDefinition, load_scenario
from .errors import ConfigError, StoreConnectionError
from .report import render_text, write_csv
from .runner import run_scenario
from .store import CONNECT_TIMEOUT_S_DEFAULT, DEFAULT_URI, MongoStore

LOGGER = logging.getLogger("mongoperf")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mongoperf",
        description="Run performance test scenarios on a MongoDB instance or cluster.",
    )
    parser.add_argument("scenario", help="YAML file containing the scenario declaration")
    parser.add_argument("--uri", help="MongoDB URI connection string")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Stop feeding operations after this many seconds",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        help="Seconds to keep retrying the initial connection",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort when any query fails validation instead of skipping it",
    )
    parser.add_argument("--csv", help="Write per-query statistics to this CSV file")
    parser.add_argument("--chart", help="Render per-query statistics to this PNG file")
    parser.add_argument(
        "--docker-image",
        help="Start a throwaway store container from this image and run against it",
    )
    parser.add_argument(
        "--drop-collection",
        action="store_true",
        help="Drop the target collection after the run",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the parsed scenario without connecting",
    )
    parser.add_argument("--log-level", help="Logging level")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def configure_logger(log_path: Path) -> logging.Handler:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    LOGGER.addHandler(handler)
    return handler


def env_float(env: Mapping[str, str], name: str, default: float | None) -> float | None:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
        if value <= 0:
            raise ValueError("non-positive value")
    except ValueError:
        print(f"invalid {name} value {raw!r}; defaulting to {default}", file=sys.stderr)
        return default
    return value


def describe_scenario(scenario: ScenarioDefinition) -> str:
    lines = [
        f"Scenario: {scenario.database}.{scenario.collection} "
        f"(parallel={scenario.parallel}, buffer={scenario.buffer_size})"
    ]
    for definition in scenario.operations:
        repeat = "forever" if definition.infinite else str(definition.repeat)
        lines.append(f"  - {definition.name}: action={definition.action} repeat={repeat}")
    return "\n".join(lines)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    env = os.environ

    setup_logging(args.log_level or env.get("MONGOPERF_LOG_LEVEL", "INFO"))
    log_file = args.log_file or env.get("MONGOPERF_LOG_FILE")
    file_handler = configure_logger(Path(log_file)) if log_file else None

    uri = args.uri or env.get("MONGOPERF_URI", DEFAULT_URI)
    timeout = args.timeout
    if timeout is None:
        timeout = env_float(env, "MONGOPERF_TIMEOUT_SECONDS", None)
    elif timeout <= 0:
        print("--timeout must be > 0", file=sys.stderr)
        return 1
    connect_timeout = args.connect_timeout
    if connect_timeout is None:
        connect_timeout = env_float(env, "MONGOPERF_CONNECT_TIMEOUT_SECONDS", CONNECT_TIMEOUT_S_DEFAULT)
    csv_path = args.csv or env.get("MONGOPERF_CSV_PATH")
    chart_path = args.chart or env.get("MONGOPERF_CHART_PATH")
    docker_image = args.docker_image or env.get("MONGOPERF_DOCKER_IMAGE")

    try:
        scenario = load_scenario(args.scenario)

        if args.dry_run:
            print(describe_scenario(scenario))
            return 0

        with contextlib.ExitStack() as stack:
            if docker_image:
                from .docker_control import StoreContainerConfig, StoreContainerManager

                uri = stack.enter_context(
                    StoreContainerManager().run(StoreContainerConfig(image=docker_image, environment={}))
                )
            LOGGER.info("connecting to: %s", uri)
            store = MongoStore.connect(uri, scenario.database, scenario.collection, connect_timeout)
            stack.callback(store.close)

            token = CancellationToken()
            with CancellationSupervisor(token, timeout_s=timeout):
                report = run_scenario(token, scenario, store, uri=uri, strict=args.strict)

            if args.drop_collection:
                store.drop()

        print(render_text(report))
        if csv_path:
            LOGGER.info("Saved query statistics to %s", write_csv(report, csv_path))
        if chart_path:
            from .charts import render_report_chart

            render_report_chart(report, chart_path)
        return 0
    except ConfigError as exc:
        print(f"invalid scenario: {exc}", file=sys.stderr)
        return 1
    except StoreConnectionError as exc:
        print(f"connection failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if file_handler is not None:
            LOGGER.removeHandler(file_handler)
            file_handler.close()


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
