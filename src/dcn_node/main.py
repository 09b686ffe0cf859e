"""CLI entrypoint for dcn-node."""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from dcn_node import __version__
from dcn_node.compute.kernel import DEFAULT_MAX_ITERATIONS
from dcn_node.controllers import (
    NodeCliController,
    RegisterCommand,
    RegistrationError,
    RenderCommand,
    RunOnceCommand,
    RunWorkerCommand,
)
from dcn_node.models import PreconditionError, RenderJob

click.rich_click.USE_MARKDOWN = True
NODE_CONTROLLER = NodeCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="dcn-node")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level. Defaults to DCN_NODE_LOG_LEVEL or INFO.",
)
def dcn_node(log_level: str | None) -> None:
    """Distributed render network compute node."""

    level = (log_level or os.getenv("DCN_NODE_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


@dcn_node.command("register")
@click.option("--name", default=None, help="Node display name. Defaults to DCN_NODE_NAME.")
@click.option("--cpu", default=None, help="CPU description. Detected when omitted.")
@click.option("--gpu", default=None, help="GPU description.")
@click.option("--cores", type=click.IntRange(min=1), default=None, help="CPU core count.")
@click.option("--ram", default=None, help="RAM description. Detected when omitted.")
def register(  # noqa: PLR0913
    name: str | None,
    cpu: str | None,
    gpu: str | None,
    cores: int | None,
    ram: str | None,
) -> None:
    """Register this machine with the coordinator and print its node id."""

    with _cli_errors():
        lines = NODE_CONTROLLER.register(
            RegisterCommand(name=name, cpu=cpu, gpu=gpu, cores=cores, ram=ram),
        )
    _emit_lines(lines)


@dcn_node.command("run")
@click.option("--node-id", default=None, help="Node id. Defaults to DCN_NODE_ID.")
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after fetching this many tasks (default: run until interrupted).",
)
@click.option(
    "--retry-delay",
    "retry_delay_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait after an empty queue or a failure. Defaults to 10.",
)
def run(node_id: str | None, max_tasks: int | None, retry_delay_seconds: float | None) -> None:
    """Run the task loop until interrupted with Ctrl-C or SIGTERM."""

    with _cli_errors():
        lines = NODE_CONTROLLER.run_worker(
            RunWorkerCommand(
                node_id=node_id,
                max_tasks=max_tasks,
                retry_delay_seconds=retry_delay_seconds,
            ),
        )
    _emit_lines(lines)


@dcn_node.command("once")
@click.option("--node-id", default=None, help="Node id. Defaults to DCN_NODE_ID.")
def once(node_id: str | None) -> None:
    """Fetch, render, and submit at most one task."""

    with _cli_errors():
        lines = NODE_CONTROLLER.run_once(RunOnceCommand(node_id=node_id))
    _emit_lines(lines)


@dcn_node.command("render")
@click.option("--x-min", type=float, default=-2.0, show_default=True)
@click.option("--x-max", type=float, default=1.0, show_default=True)
@click.option("--y-min", type=float, default=-1.5, show_default=True)
@click.option("--y-max", type=float, default=1.5, show_default=True)
@click.option("--width", type=click.IntRange(min=1), default=256, show_default=True)
@click.option("--height", type=click.IntRange(min=1), default=256, show_default=True)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=DEFAULT_MAX_ITERATIONS,
    show_default=True,
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    required=True,
    help="PNG file to write.",
)
def render_image(  # noqa: PLR0913
    x_min: float,
    x_max: float,
    y_min: float,
    y_max: float,
    width: int,
    height: int,
    max_iterations: int,
    output_path: Path,
) -> None:
    """Render a job locally without contacting the coordinator."""

    with _cli_errors():
        job = RenderJob.from_payload(
            {
                "x_min": x_min,
                "x_max": x_max,
                "y_min": y_min,
                "y_max": y_max,
                "width": width,
                "height": height,
            },
        )
        lines = NODE_CONTROLLER.render(
            RenderCommand(job=job, output_path=output_path, max_iterations=max_iterations),
        )
    _emit_lines(lines)


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (PreconditionError, RegistrationError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    dcn_node()
