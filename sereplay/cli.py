#!/usr/bin/env python3
"""
Command Line Interface for sereplay.

This module provides the command-line interface for replaying a script of
hex-encoded packets to a serial device, waiting for each response before
sending the next packet, with optional traffic logging.
"""

import asyncio
import logging
import sys
from typing import List, Optional

import click

from sereplay import __version__
from sereplay.config import (
    DEFAULT_BAUDRATE,
    DEFAULT_INTER_FRAME_TIMEOUT,
    DEFAULT_REPEAT,
    DEFAULT_RESP_TIMEOUT,
    DEFAULT_SEND_DELAY,
    ReplayConfig,
)
from sereplay.console import ConsoleReporter
from sereplay.engine import ReplayEngine, ReplayStats
from sereplay.errors import ConfigError, MalformedPacketError, ReplayError
from sereplay.packets import END_MARKER, PacketSource, QueueItem
from sereplay.selector import parse_selector
from sereplay.recorder import FileLogSink, TrafficRecorder
from sereplay.transport import SerialTransport, Transport


async def replay(
    packets: List[QueueItem],
    transport: Transport,
    config: ReplayConfig,
    log_file: Optional[str] = None,
    reporter: Optional[ConsoleReporter] = None,
    debug: bool = False,
) -> ReplayStats:
    """
    Replay packets over a transport, logging traffic to log_file if given.

    Raises:
        ReplayError: If the run fails (the traffic log is flushed and
            closed either way)
    """
    recorder = TrafficRecorder(FileLogSink(log_file)) if log_file else None
    engine = ReplayEngine(transport, config, recorder=recorder, reporter=reporter, debug=debug)
    try:
        return await engine.run(packets)
    finally:
        if recorder is not None:
            if recorder.error is None:
                await recorder.close()
            else:
                recorder.sink.close()


@click.command()
@click.version_option(__version__, "-v", "--version")
@click.help_option("-h", "--help")
@click.option(
    "-i",
    "--input",
    "input_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="A file containing the sequence of packets as hex strings",
)
@click.option(
    "-d",
    "--device",
    required=True,
    help="Serial device name",
)
@click.option(
    "-b",
    "--baud",
    type=int,
    default=DEFAULT_BAUDRATE,
    show_default=True,
    help="Serial device baudrate",
)
@click.option(
    "-r",
    "--resp-timeout",
    type=float,
    default=DEFAULT_RESP_TIMEOUT,
    show_default=True,
    help="Device response timeout in ms",
)
@click.option(
    "-t",
    "--inter-frame-timeout",
    type=float,
    default=DEFAULT_INTER_FRAME_TIMEOUT,
    show_default=True,
    help="Silence in ms that ends a response frame",
)
@click.option(
    "-D",
    "--send-delay",
    type=float,
    default=DEFAULT_SEND_DELAY,
    show_default=True,
    help="Delay in ms after each packet before sending the next",
)
@click.option(
    "-p",
    "--packets-selector",
    default=None,
    help="Select packets by index, e.g. 3, 1-3 or 1-3,5",
)
@click.option(
    "-e",
    "--repeat",
    type=float,
    default=DEFAULT_REPEAT,
    show_default=True,
    help="Replay the input n times",
)
@click.option(
    "-l",
    "--log",
    "log_file",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="Traffic log file",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable detailed debug output",
)
def cli(
    input_file: str,
    device: str,
    baud: int,
    resp_timeout: float,
    inter_frame_timeout: float,
    send_delay: float,
    packets_selector: Optional[str],
    repeat: float,
    log_file: Optional[str],
    debug: bool,
) -> None:
    """
    Replay a packet script to a serial device.

    Each packet is sent once the previous one has been answered or has
    timed out. Response frames are delimited by line silence.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    logging.getLogger("sereplay").setLevel(level)

    try:
        config = ReplayConfig(
            resp_timeout=resp_timeout,
            inter_frame_timeout=inter_frame_timeout,
            send_delay=send_delay,
            repeat=repeat,
            selector=parse_selector(packets_selector),
        )
    except ConfigError as e:
        raise click.ClickException(str(e))

    # Parse the whole script before touching the device
    try:
        packets = PacketSource.from_config(config).load(input_file)
    except MalformedPacketError as e:
        raise click.ClickException(f"{input_file}: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise click.FileError(input_file, hint=str(e))

    if debug:
        selected = len({p.index for p in packets if p is not END_MARKER})
        click.echo(
            f"Loaded {selected} selected packets from {input_file}, {len(packets) - 1} queued"
        )

    reporter = ConsoleReporter()
    transport = SerialTransport(device, baud, debug=debug)
    try:
        stats = asyncio.run(
            replay(packets, transport, config, log_file=log_file, reporter=reporter, debug=debug)
        )
    except ReplayError as e:
        raise click.ClickException(str(e))

    reporter.summary(stats, transport.name)


def main():
    """
    Main entry point for the CLI.

    Returns the exit code from the CLI command execution.
    """
    try:
        return cli()
    except Exception as e:
        # Catch any unexpected exceptions that weren't handled elsewhere
        click.echo(f"Unexpected error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
