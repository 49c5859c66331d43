"""
Human-readable console output for a replay run.

Prints each packet's doc text, a '>' line plus hex dump for each send, a '<'
line plus hex dump for each response, timeout messages, and a summary at the
end of the run.
"""

import os
from typing import Optional

import click
import jinja2
from scapy.utils import hexdump

from sereplay.recorder import RECEIVE, SEND, timestamp


def format_dump(data: bytes) -> str:
    """Hex dump of data, one 16-byte row per line."""
    if not data:
        return ""
    return hexdump(data, dump=True)


class ConsoleReporter:
    """Writes replay progress to the terminal."""

    def __init__(self, template_dir: Optional[str] = None):
        """
        Initialize the reporter.

        Args:
            template_dir: Directory holding summary.j2 (defaults to the
                package templates)
        """
        if template_dir is None:
            template_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
        self.template_dir = template_dir

    def _traffic(self, direction: str, data: bytes) -> None:
        click.echo(f"{direction} {timestamp()} len {len(data)}")
        dump = format_dump(data)
        if dump:
            click.echo(dump)

    def packet_sent(self, packet) -> None:
        if packet.doc:
            click.echo(packet.doc.strip())
        self._traffic(SEND, packet.data)

    def response_received(self, frame: bytes) -> None:
        self._traffic(RECEIVE, frame)

    def response_timeout(self, error: Exception) -> None:
        click.echo(str(error), err=True)

    def render_summary(self, stats, device: str) -> str:
        """
        Render the end-of-run summary.

        Raises:
            ValueError: If the summary template cannot be loaded
        """
        try:
            env = jinja2.Environment(
                loader=jinja2.FileSystemLoader(self.template_dir),
                trim_blocks=True,
                lstrip_blocks=True,
            )
            template = env.get_template("summary.j2")
        except jinja2.exceptions.TemplateError as e:
            raise ValueError(f"Could not load summary template: {e}") from e
        return template.render(stats=stats, device=device)

    def summary(self, stats, device: str) -> None:
        click.echo(self.render_summary(stats, device))
