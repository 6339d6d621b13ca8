"""
Command Line Interface for stackup.
"""
import functools

import click

from ..exceptions import ConfigError, StackupError
from ..MANAGERS.deployment_orchestrator import DeploymentOrchestrator
from ..MODELS.deployment_attempt import DeploymentAttempt
from ..PARSERS.settings_parser import SettingsParser
from ..UTILS.log_setup import setup_logging
from ..UTILS.report import DeploymentReport

EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def handle_errors(func):
    """
    Maps expected failures to an error line and an exit code, without a traceback.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()
        try:
            return func(*args, **kwargs)
        except ConfigError as e:
            click.secho(f"ERROR: {e}", fg='red', err=True)
            ctx.exit(EXIT_USAGE)
        except StackupError as e:
            click.secho(f"ERROR: {e}", fg='red', err=True)
            ctx.exit(EXIT_FAILURE)
        except KeyboardInterrupt:
            click.echo("\nInterrupted.", err=True)
            ctx.exit(EXIT_INTERRUPTED)
    return wrapper


def get_orchestrator(ctx: click.Context) -> DeploymentOrchestrator:
    """
    Builds the configuration and orchestrator on first use.
    """
    obj = ctx.find_root().obj
    if 'orchestrator' not in obj:
        config = SettingsParser().load(obj['settings'], overrides=obj['overrides'])
        obj['config'] = config
        obj['orchestrator'] = DeploymentOrchestrator(config)
    return obj['orchestrator']


def finish(ctx: click.Context, attempt: DeploymentAttempt) -> None:
    """
    Prints the attempt summary and exits with its status.
    """
    color = {'success': 'green', 'success_with_warning': 'yellow'}.get(
        attempt.outcome.value, 'red')
    click.secho(DeploymentReport(attempt).render(), fg=color)
    ctx.exit(attempt.exit_code)


@click.group()
@click.option('--config', '-c', 'settings', default=None,
              help='Settings file (default: ./stackup.yml if present)')
@click.option('--file', '-f', 'compose_file', default=None, help='Compose file path')
@click.option('--env-file', default=None, help='Env file with secrets and settings')
@click.option('--project-name', '-p', default=None, help='Compose project name')
@click.option('--verbose', '-v', is_flag=True, help='Show debug output and runtime commands')
@click.option('--quiet', '-q', is_flag=True, help='Only show warnings and errors')
@click.pass_context
def cli(ctx, settings, compose_file, env_file, project_name, verbose, quiet):
    """
    stackup - deploy and operate a Docker Compose stack.

    Deployments check prerequisites, back up the database, prepare data
    directories, start services, wait for them to become healthy and probe
    the public endpoint.
    """
    ctx.ensure_object(dict)
    setup_logging(verbose=verbose, quiet=quiet)
    ctx.obj['settings'] = settings
    ctx.obj['overrides'] = {
        'compose_file': compose_file,
        'env_file': env_file,
        'project_name': project_name,
    }


@cli.command()
@click.pass_context
@handle_errors
def check(ctx):
    """Check prerequisites without changing anything."""
    orchestrator = get_orchestrator(ctx)
    orchestrator.check().raise_for_failures()
    click.secho("All prerequisites satisfied.", fg='green')


@cli.command()
@click.option('--skip-backup', is_flag=True, help='Do not dump the database first')
@click.pass_context
@handle_errors
def deploy(ctx, skip_backup):
    """Full deployment with backup, permission fixes and health checks."""
    orchestrator = get_orchestrator(ctx)
    finish(ctx, orchestrator.deploy(skip_backup=skip_backup))


@cli.command()
@click.option('--skip-backup', is_flag=True, help='Do not dump the database first')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
@handle_errors
def reset(ctx, skip_backup, yes):
    """Stop, clean up and redeploy everything."""
    if not yes:
        click.confirm('This stops all services and redeploys the stack. Continue?', abort=True)
    orchestrator = get_orchestrator(ctx)
    finish(ctx, orchestrator.reset(skip_backup=skip_backup))


@cli.command()
@click.pass_context
@handle_errors
def start(ctx):
    """Start services with permission fixes."""
    orchestrator = get_orchestrator(ctx)
    finish(ctx, orchestrator.start())


@cli.command()
@click.pass_context
@handle_errors
def stop(ctx):
    """Stop all services."""
    orchestrator = get_orchestrator(ctx)
    orchestrator.stop()


@cli.command()
@click.pass_context
@handle_errors
def status(ctx):
    """Show service status."""
    orchestrator = get_orchestrator(ctx)
    states = orchestrator.status()
    if not states:
        click.echo("No containers found. The stack is not running.")
    else:
        click.echo(f"{'SERVICE':15} {'CONTAINER':30} {'STATUS':20}")
        click.echo("-" * 65)
        for state in states:
            click.echo(f"{state.service:15} {state.container:30} {state.display_status:20}")

    artifacts = orchestrator.backups.list_artifacts()
    if artifacts:
        click.echo(f"\nLatest backup: {artifacts[-1]} ({len(artifacts)} total)")


@cli.command()
@click.argument('service', required=False)
@click.option('--tail', '-n', default=100, show_default=True, help='Lines to show per service')
@click.option('--follow', is_flag=True, help='Keep streaming new log lines')
@click.pass_context
@handle_errors
def logs(ctx, service, tail, follow):
    """Show service logs, optionally for a single service."""
    orchestrator = get_orchestrator(ctx)
    orchestrator.show_logs(service=service, lines=tail, follow=follow)


@cli.command('fix-permissions')
@click.option('--containers', is_flag=True, help='Also fix paths inside running containers')
@click.option('--force', is_flag=True, help='Change ownership even of directories in use')
@click.pass_context
@handle_errors
def fix_permissions(ctx, containers, force):
    """Re-apply data directory ownership and modes."""
    orchestrator = get_orchestrator(ctx)
    warnings = orchestrator.fix_permissions(containers=containers, force=force)
    if warnings:
        click.secho(f"Permission fixes applied with {len(warnings)} warning(s).", fg='yellow')
    else:
        click.secho("Permission fixes applied.", fg='green')


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})

if __name__ == '__main__':
    main()
