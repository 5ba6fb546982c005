"""
driver.py

Command-line driver: reads one access-log source, builds a LogAnalyzer
snapshot and prints the standard report.

Example:
    python -m access_log_pipeline data/apache.accesslog --partitions 4
"""

from typing import Any, Dict, List, Optional
import argparse
import logging
import sys

import ray
import ujson as json

from access_log_pipeline.aggregation import (
    by_date_time_hour,
    by_endpoint,
    by_ip_address,
    by_response_code,
)
from access_log_pipeline.core_logic import LogAnalyzer
from access_log_pipeline.data_processing import read_log_lines
from access_log_pipeline.utils import DEFAULT_CONFIG, EmptyInput, InvalidParameter

logger = logging.getLogger("driver")


def run_standard_queries(
    analyzer: LogAnalyzer, config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Run the standard report queries against a snapshot.

    Args:
        analyzer: LogAnalyzer holding the loaded records.
        config: The "queries" section of the config; DEFAULT_CONFIG when None.

    Returns:
        Dict with one entry per query, values ready for rendering.

    Raises:
        EmptyInput: if the snapshot holds no records.
    """
    cfg = config or DEFAULT_CONFIG["queries"]
    stats = analyzer.content_size_stats()
    return {
        "content_size": {
            "avg": stats.average,
            "min": stats.minimum,
            "max": stats.maximum,
            "count": stats.count,
        },
        "response_code_counts": sorted(
            analyzer.count_by_key(by_response_code, cfg["response_code_limit"]).items()
        ),
        "frequent_ip_addresses": sorted(
            analyzer.filter_groups_above_threshold(
                by_ip_address, cfg["ip_min_count"], cfg["ip_limit"]
            )
        ),
        "top_endpoints": analyzer.top_n_by_count(by_endpoint, cfg["top_n"]),
        "top_ip_addresses": analyzer.top_n_by_count(by_ip_address, cfg["top_n"]),
        "ip_addresses_by_hour": analyzer.two_key_grouped_counts(
            by_ip_address, by_date_time_hour, exclude=cfg["excluded_ip"]
        ),
    }


def render_report(
    report: Dict[str, Any],
    malformed_count: int = 0,
    config: Optional[Dict[str, Any]] = None,
) -> str:
    """Render a report as human-readable text."""
    cfg = config or DEFAULT_CONFIG["queries"]
    size = report["content_size"]
    lines: List[str] = [
        f"Content Size Avg: {size['avg']}, Min: {size['min']}, Max: {size['max']}",
        f"Response code counts: {report['response_code_counts']}",
        f"IPAddresses > {cfg['ip_min_count']} times: "
        f"{report['frequent_ip_addresses']}",
        f"Top Endpoints: {report['top_endpoints']}",
        f"Top IPAddresses: {report['top_ip_addresses']}",
        "IPAddresses by hour:",
    ]
    for ip, hour, count in report["ip_addresses_by_hour"]:
        lines.append(f"  {hour}  {ip}  {count}")
    if malformed_count:
        lines.append(f"Skipped malformed lines: {malformed_count}")
    return "\n".join(lines)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Parse an access log and print traffic statistics."
    )
    parser.add_argument("log_file", help="Path to the access log (.gz accepted)")
    parser.add_argument(
        "--partitions", type=int, default=DEFAULT_CONFIG["ray"]["num_partitions"]
    )
    parser.add_argument(
        "--batch-size", type=int, default=DEFAULT_CONFIG["ray"]["lines_per_batch"]
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort on the first malformed line instead of skipping it",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if not ray.is_initialized():
        ray.init(include_dashboard=False, log_to_driver=False)

    try:
        analyzer, malformed = LogAnalyzer.from_lines(
            read_log_lines(args.log_file),
            num_partitions=args.partitions,
            lines_per_batch=args.batch_size,
        )
    except FileNotFoundError:
        logger.error("Log source not found: %s", args.log_file)
        return 1
    except InvalidParameter as e:
        logger.error("Invalid option: %s", e)
        return 1

    if malformed:
        if args.strict:
            logger.error("Aborting: %s", malformed[0])
            return 1
        logger.warning("Skipped %d malformed lines", len(malformed))

    try:
        report = run_standard_queries(analyzer)
    except EmptyInput as e:
        logger.error("No records to analyze in %s: %s", args.log_file, e)
        return 1

    if args.json:
        print(json.dumps(report))
    else:
        print(render_report(report, len(malformed)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
