#!/usr/bin/env python3
"""
tracenet CLI - Command Line Interface

Usage:
    tracenet extract <trace.jsonl> --processes <processes.csv> [--db PATH] [--json OUT]
    tracenet show-config [--config config.yaml]
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from tracenet.config import ConfigError, load_config
from tracenet.db.duckdb_adapter import DuckDBAdapter
from tracenet.engine import NetworkCorrelationEngine
from tracenet.ingestion.process_directory import ProcessDirectory
from tracenet.ingestion.trace_source import TraceFormatError, load_trace


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None):
    """Configure logging."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


@click.group()
def cli():
    """tracenet - TCP and DNS correlation for trace captures"""
    pass


@cli.command()
@click.argument('trace_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--processes', '-p', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Process table CSV (pid, image_name, start, end)')
@click.option('--config', '-c', 'config_path', default=None, help='Path to config.yaml')
@click.option('--db', 'db_path', default=None, help='DuckDB path (default from config)')
@click.option('--no-db', is_flag=True, help='Do not store results in DuckDB')
@click.option('--json', 'json_out', default=None, type=click.Path(dir_okay=False),
              help='Write the extract as JSON')
@click.option('--capture', default=None, help='Capture name (default: trace file stem)')
@click.option('--log-level', '-l', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
def extract(trace_file, processes, config_path, db_path, no_db, json_out, capture, log_level):
    """Correlate one capture"""
    try:
        settings = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    setup_logging(log_level or settings.log_level, settings.log_file)
    logger = logging.getLogger('tracenet')

    capture = capture or Path(trace_file).stem
    try:
        directory = ProcessDirectory.from_csv(processes)
        events = load_trace(trace_file)
    except (TraceFormatError, ValueError, OSError) as e:
        logger.error(f"Failed to load input: {e}")
        sys.exit(1)

    result = NetworkCorrelationEngine(directory, settings).run(events, capture=capture)

    click.echo()
    click.echo(f" Capture:          {capture}")
    click.echo(f" Connections:      {len(result.connections):,}")
    click.echo(f" Retransmissions:  {len(result.retransmissions):,}")
    click.echo(f" DNS queries:      {len(result.dns_events):,}")

    if json_out:
        Path(json_out).write_text(result.model_dump_json(indent=2))
        click.echo(f" JSON saved:       {json_out}")

    if not no_db:
        with DuckDBAdapter(db_path or settings.db_path) as db:
            db.store_extract(result, capture)
            stored = db.connection_count(capture)
            summary = db.retransmission_summary(capture)
            slowest = db.slowest_dns_queries(capture, limit=5)
        click.echo(f" Stored in:        {db_path or settings.db_path} ({stored:,} connections)")
        click.echo(
            f" Retransmissions:  {summary['receiver_detected']} receiver-side, "
            f"{summary['sender_detected']} sender-side"
        )
        if not slowest.empty:
            click.echo(" Slowest DNS queries:")
            for row in slowest.itertuples(index=False):
                flag = " (timed out)" if row.timed_out else ""
                click.echo(f"   {row.duration * 1000:8.1f} ms  {row.query}  [{row.image_name}]{flag}")


@cli.command('show-config')
@click.option('--config', '-c', 'config_path', default=None, help='Path to config.yaml')
def show_config(config_path):
    """Print effective settings"""
    try:
        settings = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    click.echo(settings.model_dump_json(indent=2))


if __name__ == '__main__':
    cli()
