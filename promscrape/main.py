"""Command line entry point for the scrape analyzer."""
import argparse
import logging
import sys
from typing import List, Optional

from promscrape.config import Config, load_config
from promscrape.errors import ScrapeError
from promscrape.report import render_json, render_table
from promscrape.scraper import PromScraper
from promscrape.self_metrics import SelfMetrics


def setup_logging(log_level: str, log_file: Optional[str] = None):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers = None
    if log_file:
        handlers = [logging.FileHandler(log_file)]

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promscrape",
        description="Analyze the cardinality of a Prometheus scrape target"
    )
    parser.add_argument("--config", "-c", help="Path to configuration YAML file")
    parser.add_argument("--scrape-url", help="The URL to scrape")
    parser.add_argument("--scrape-file", help="A file holding a saved text-format scrape")
    parser.add_argument("--timeout", type=float, help="Scrape timeout in seconds (default: 10)")
    parser.add_argument(
        "--max-body-size",
        type=int,
        help="Maximum size of the scrape body in bytes (default: 10MiB)"
    )
    parser.add_argument("--http-config-file", help="HTTP client configuration file (TLS, auth, proxy)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Log filtering level (default: INFO)"
    )
    parser.add_argument("--log-file", help="Log file to write to, stderr if empty")
    parser.add_argument("--output", "-o", choices=["table", "json"], default="table")
    parser.add_argument("--limit", type=int, help="Only show the N families with the most series")
    parser.add_argument("--show-text", metavar="NAME", help="Print the raw scrape text of one metric family")
    parser.add_argument("--self-metrics-file", help="Write self-monitoring metrics to this file")
    return parser


def resolve_config(args: argparse.Namespace) -> Config:
    """Load the optional config file and apply command line overrides."""
    config = load_config(args.config) if args.config else Config()

    overrides = {
        "url": args.scrape_url,
        "file": args.scrape_file,
        "timeout_s": args.timeout,
        "max_body_size": args.max_body_size,
        "http_config_file": args.http_config_file,
    }
    scrape = config.scrape.model_dump()
    scrape.update({k: v for k, v in overrides.items() if v is not None})
    config.scrape = type(config.scrape)(**scrape)

    if args.log_level:
        config.global_.log_level = args.log_level
    if args.log_file:
        config.global_.log_file = args.log_file
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main function."""
    args = build_parser().parse_args(argv)

    # Load configuration
    try:
        config = resolve_config(args)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config.global_.log_level, config.global_.log_file)
    logger = logging.getLogger(__name__)

    self_metrics = SelfMetrics() if args.self_metrics_file else None
    scraper = PromScraper.from_config(config.scrape, self_metrics=self_metrics)

    try:
        result = scraper.scrape()
    except ScrapeError as e:
        logger.error(f"Scrape failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if self_metrics:
            self_metrics.write(args.self_metrics_file)

    if args.show_text:
        text = result.series_scrape_text.get(args.show_text)
        if text is None:
            print(f"Metric family {args.show_text!r} not found in scrape text", file=sys.stderr)
            return 1
        print(text, end="")
        return 0

    if args.output == "json":
        print(render_json(result.series, args.limit))
    else:
        print(render_table(result.series, args.limit))
    return 0


if __name__ == "__main__":
    sys.exit(main())
