"""
Command Line Interface for pytainers.
"""
import logging
import os
import time

import click

from ..ENGINES.detection import ENGINES, detect_engine
from ..errors import NotInstalled, PytainersError, WaitFailed, WaitTimeout
from ..MANAGERS.compose_orchestrator import ComposeOrchestrator
from ..MANAGERS.container_lifecycle import ContainerLifecycle
from ..MANAGERS.port_resolver import PortResolver
from ..MANAGERS.wait_evaluator import WaitStrategyEvaluator
from ..MODELS.container_spec import ContainerSpec
from ..MODELS.settings import load_settings
from ..MODELS.wait_strategy import EngineHealth, ExitCode, HttpStatus, LogMessagePattern, TcpPortOpen, WaitPolicy
from ..UTILS.identity import IdentityAllocator

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def parse_wait(value: str):
    """
    Parses a wait option.

    ``log:<regex>``, ``tcp:<port>``, ``http:<port>[/path]``, ``https:<port>[/path]``,
    ``health`` or ``exit:<code>``.
    """
    kind, _, arg = value.partition(":")
    kind = kind.strip().lower()
    try:
        if kind == "log":
            return LogMessagePattern(pattern=arg)
        if kind == "tcp":
            return TcpPortOpen(port=int(arg))
        if kind in ("http", "https"):
            port, _, path = arg.partition("/")
            return HttpStatus(port=int(port), path=f"/{path}", https=kind == "https", insecure=kind == "https")
        if kind == "health":
            return EngineHealth()
        if kind == "exit":
            return ExitCode(expected=int(arg or 0))
    except ValueError as e:
        raise click.BadParameter(f"{value}: {e}")
    raise click.BadParameter(f"unknown wait kind '{kind}'")


def _wait_forever(what: str):
    click.echo(f"{what} Press Ctrl+C to stop.")
    while True:
        time.sleep(1)


@click.group()
@click.option('--engine', type=click.Choice(list(ENGINES)), default=None, help='Container engine to use')
@click.option('--env-file', default=None, help='Settings file (defaults to ./.env)')
@click.option('--verbose', '-v', count=True, help='More logging (-vv for engine commands)')
@click.pass_context
def cli(ctx, engine, env_file, verbose):
    """
    pytainers - disposable containers for test suites.
    """
    ctx.ensure_object(dict)
    settings = load_settings(env_file)
    if verbose:
        level = logging.DEBUG if verbose > 1 else logging.INFO
    else:
        level = getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    ctx.obj['settings'] = settings
    ctx.obj['engine_name'] = engine


def _engine(ctx):
    try:
        return detect_engine(ctx.obj['engine_name'], ctx.obj['settings'])
    except NotInstalled as e:
        raise click.ClickException(str(e))


def _policy(settings, timeout):
    return WaitPolicy(timeout=timeout or settings.wait_timeout, interval=settings.wait_interval)


@cli.command()
@click.pass_context
def info(ctx):
    """Show the detected container engine."""
    engine = _engine(ctx)
    click.echo(f"engine:  {engine.name}")
    click.echo(f"binary:  {engine.binary}")
    click.echo(f"version: {engine.version()}")
    click.echo(f"compose: {engine.compose_version() or 'not available'}")


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument('image')
@click.argument('command', nargs=-1, type=click.UNPROCESSED)
@click.option('--port', '-p', 'ports', multiple=True, help='Port to publish, [HOST:]CONTAINER[/PROTO]')
@click.option('--env', '-e', 'env', multiple=True, help='Environment variable KEY=VALUE')
@click.option('--wait', '-w', 'waits', multiple=True, help='Readiness check, e.g. log:ready, tcp:5432, http:80/health')
@click.option('--name', default=None, help='Name hint for the container')
@click.option('--timeout', type=float, default=None, help='Readiness timeout in seconds')
@click.option('--detach', '-d', is_flag=True, help='Leave the container running and exit')
@click.pass_context
def run(ctx, image, command, ports, env, waits, name, timeout, detach):
    """Run IMAGE until it is ready and print its published ports."""
    settings = ctx.obj['settings']
    environment = {}
    for item in env:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got '{item}'", param_hint="--env")
        environment[key] = value

    spec = ContainerSpec(
        image=image,
        command=list(command),
        ports=list(ports),
        environment=environment,
        wait_strategies=[parse_wait(w) for w in waits],
        name_hint=name,
    )
    engine = _engine(ctx)
    lifecycle = ContainerLifecycle(
        engine,
        spec,
        allocator=IdentityAllocator(settings.name_prefix),
        policy=_policy(settings, timeout),
        stop_grace=settings.stop_grace,
        keep=settings.keep or detach,
    )
    try:
        lifecycle.start()
    except (WaitTimeout, WaitFailed) as e:
        try:
            click.echo(lifecycle.logs().stdout[-2000:], err=True)
        finally:
            lifecycle.teardown()
        raise click.ClickException(str(e))
    except PytainersError as e:
        raise click.ClickException(str(e))

    click.echo(f"{lifecycle.identity.name} {lifecycle.identity.id}")
    for mapping in spec.ports:
        host_port = lifecycle.host_port(mapping.container_port, mapping.protocol)
        click.echo(f"{mapping.key} -> {engine.host}:{host_port}")

    if detach:
        return
    try:
        _wait_forever("Running...")
    except KeyboardInterrupt:
        click.echo("\nStopping container...")
    finally:
        lifecycle.__exit__(None, None, None)


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--wait', '-w', 'waits', multiple=True, help='SERVICE=CHECK, e.g. db=tcp:5432')
@click.option('--port', '-p', 'ports', multiple=True, help='SERVICE:PORT to print')
@click.option('--timeout', type=float, default=None, help='Readiness timeout in seconds')
@click.option('--detach', '-d', is_flag=True, help='Leave the project running and exit')
@click.pass_context
def compose(ctx, file, waits, ports, timeout, detach):
    """Bring up the compose FILE in a throw-away project."""
    settings = ctx.obj['settings']
    wait_strategies = {}
    for item in waits:
        service, sep, check = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected SERVICE=CHECK, got '{item}'", param_hint="--wait")
        wait_strategies.setdefault(service, []).append(parse_wait(check))
    exposed_ports = {}
    for item in ports:
        service, _, port = item.rpartition(":")
        try:
            exposed_ports.setdefault(service, []).append(int(port))
        except ValueError:
            raise click.BadParameter(f"expected SERVICE:PORT, got '{item}'", param_hint="--port")

    with open(file, 'r') as f:
        content = f.read()

    engine = _engine(ctx)
    policy = _policy(settings, timeout)
    orchestrator = ComposeOrchestrator(
        engine,
        policy=policy,
        allocator=IdentityAllocator(settings.name_prefix),
        evaluator=WaitStrategyEvaluator(engine, PortResolver(engine), host=engine.host),
    )
    try:
        project = orchestrator.build_project(
            os.path.splitext(os.path.basename(file))[0],
            content,
            wait_strategies=wait_strategies,
            exposed_ports=exposed_ports,
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    with project:
        try:
            orchestrator.up(project)
        except PytainersError as e:
            raise click.ClickException(str(e))
        click.echo(f"project: {project.name}")
        for service, service_ports in exposed_ports.items():
            for port in service_ports:
                click.echo(f"{service}:{port} -> {engine.host}:{project.host_port(service, port)}")
        if detach or settings.keep:
            project.detach()
            return
        try:
            _wait_forever("Running...")
        except KeyboardInterrupt:
            click.echo("\nStopping services...")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
