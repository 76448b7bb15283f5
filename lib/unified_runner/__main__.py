"""Entry point for running unified-format scenarios against a deployment.

Usage:
    python -m unified_runner path/to/scenarios [--uri URI] [--test SUBSTRING]

Environment variables:
    MONGODB_URI: Connection string (default: mongodb://localhost:27017)
    UNIFIED_THREAD_TIMEOUT: Seconds waitForThread waits per task (default: 10)
    UNIFIED_EVENT_TIMEOUT: Seconds waitForEvent waits (default: 10)
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import RunnerConfig
from .driver import MongoStartupError, create_mongo_client, default_factories, describe_server
from .errors import ConfigurationError
from .loader import load_scenario_directory, load_scenario_file
from .scenario import ScenarioExecutor, TestStatus


def _load(path: Path):
    if path.is_dir():
        return load_scenario_directory(path)
    return [(path, load_scenario_file(path))]


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run unified test format scenarios",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("path", type=str, help="Scenario file or directory")
    parser.add_argument("--uri", type=str, help="MongoDB connection string")
    parser.add_argument("--config", type=str, help="JSON runner config file")
    parser.add_argument("--test", type=str, help="Only run tests whose description contains this")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = RunnerConfig.load(args.config) if args.config else RunnerConfig.from_env()
    if args.uri:
        config.uri = args.uri

    try:
        scenarios = _load(Path(args.path))
        utility_client = create_mongo_client(config.uri)
    except (ConfigurationError, FileNotFoundError, MongoStartupError) as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(2)

    stats = {status: 0 for status in TestStatus}
    errors = 0
    try:
        executor = ScenarioExecutor(
            default_factories(),
            config,
            utility_client=utility_client,
            server_info=describe_server(utility_client, config.uri),
        )
        for path, scenario in scenarios:
            for test in scenario.get("tests", []):
                if args.test and args.test not in test.get("description", ""):
                    continue
                try:
                    verdict = executor.run(scenario, test)
                except ConfigurationError as e:
                    errors += 1
                    print(f"[ERROR] {path.name}: {test.get('description', '<no description>')}: {e}")
                    continue
                stats[verdict.status] += 1
                print(f"[{verdict.status.value.upper()}] {path.name}: {verdict.description}")
                if verdict.status == TestStatus.FAILED:
                    print(f"    {verdict.message}")
                    for frame in verdict.trail:
                        print("    " + frame.replace("\n", "\n    "))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
    finally:
        utility_client.close()

    print(f"\n=== Summary ===")
    print(f"  Passed: {stats[TestStatus.PASSED]}")
    print(f"  Failed: {stats[TestStatus.FAILED]}")
    print(f"  Skipped: {stats[TestStatus.SKIPPED]}")
    print(f"  Errors: {errors}")

    sys.exit(0 if stats[TestStatus.FAILED] == 0 and errors == 0 else 1)


if __name__ == "__main__":
    main()
