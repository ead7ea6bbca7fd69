"""
Command Line Interface for kcdeploy.
"""
import logging
import os
import secrets

import click

from ..errors import KcDeployError
from ..PARSERS.env_parser import EnvParser
from ..PARSERS.topology_parser import load_topology
from ..MANAGERS.admin_client import KeycloakAdminClient
from ..MANAGERS.client_registrar import ClientRegistrar, ClientRegistration, UserRegistration
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..CONVERTERS.to_forward_auth_env import ForwardAuthEnvConverter

DEFAULT_ENV_FILE = "keycloak.env"


def _ensure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter("%(levelname)s: %(message)s")
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    else:
        root.setLevel(level)
        for handler in root.handlers:
            handler.setFormatter(formatter)


def _fail(ctx: click.Context, error) -> None:
    click.echo(f"Error: {error}", err=True)
    ctx.exit(1)


def _config(ctx: click.Context):
    """Loads and validates the configuration once per invocation."""
    if 'config' not in ctx.obj:
        env_file = ctx.obj['env_file']
        try:
            ctx.obj['config'] = EnvParser.load_config(env_file)
        except FileNotFoundError:
            _fail(ctx, f"{env_file} not found.")
        except KcDeployError as e:
            _fail(ctx, e)
    return ctx.obj['config']


def _orchestrator(ctx: click.Context, topology_path=None) -> ServiceOrchestrator:
    config = _config(ctx)
    try:
        topology = load_topology(config, topology_path)
    except (KcDeployError, OSError) as e:
        _fail(ctx, e)
    return ServiceOrchestrator(config, topology)


@click.group()
@click.option('--env-file', '-e', envvar='KCDEPLOY_ENV_FILE', default=None,
              help=f'Env file with credentials and settings (default: {DEFAULT_ENV_FILE} if present)')
@click.option('--verbose', '-v', is_flag=True, help='Log docker commands and state transitions')
@click.pass_context
def cli(ctx, env_file, verbose):
    """
    kcdeploy - Keycloak deployment orchestrator.

    Provisions Postgres, an optional OpenLDAP directory and Keycloak behind
    Traefik using the docker CLI.
    """
    _ensure_logging(verbose)
    ctx.ensure_object(dict)
    if env_file is None and os.path.exists(DEFAULT_ENV_FILE):
        env_file = DEFAULT_ENV_FILE
    ctx.obj['env_file'] = env_file


@cli.command()
@click.option('--topology', '-t', type=click.Path(dir_okay=False), default=None,
              help='YAML topology file (default: built-in Keycloak topology)')
@click.option('--skip-configure', is_flag=True, help='Do not update realm attributes')
@click.option('--skip-verify', is_flag=True, help='Do not check the discovery document')
@click.pass_context
def deploy(ctx, topology, skip_configure, skip_verify):
    """Provision primitives, start dependencies and redeploy Keycloak."""
    orchestrator = _orchestrator(ctx, topology)
    try:
        report = orchestrator.up(configure=not skip_configure, verify=not skip_verify)
    except KcDeployError as e:
        _fail(ctx, e)
        return

    for name, action in report.actions.items():
        click.echo(f"{name:15} {action.value}")
    for warning in report.warnings:
        click.echo(f"Warning: {warning}")

    config = orchestrator.config
    click.echo("Deployment complete.")
    click.echo(f"    Public URL: {config.public_base_url}")
    if config.local_hostname:
        click.echo(f"    Local URL:  http://{config.local_hostname}{config.relative_path}")


@cli.command()
@click.pass_context
def status(ctx):
    """List service container states."""
    orchestrator = _orchestrator(ctx)
    try:
        states = orchestrator.ps()
    except KcDeployError as e:
        _fail(ctx, e)
        return
    click.echo(f"{'SERVICE':15} {'CONTAINER':25} {'STATE':10}")
    click.echo("-" * 50)
    for name, state in states.items():
        container = orchestrator.topology.services[name].container_name
        click.echo(f"{name:15} {container:25} {state:10}")


@cli.command()
@click.pass_context
def verify(ctx):
    """Check that the discovery document advertises the public issuer."""
    orchestrator = _orchestrator(ctx)
    if orchestrator.verify():
        click.echo(f"Issuer OK: {orchestrator.config.expected_issuer()}")
    else:
        click.echo("Warning: issuer verification failed (see log).")


@cli.command()
@click.pass_context
def labels(ctx):
    """Print the Traefik labels attached to Keycloak."""
    orchestrator = _orchestrator(ctx)
    for key, value in orchestrator.routing_labels().items():
        click.echo(f"{key}={value}")


@cli.command('register-client')
@click.option('--client-id', required=True, help='OIDC clientId')
@click.option('--name', default=None, help='Display name')
@click.option('--redirect-uri', 'redirect_uris', multiple=True, help='Allowed redirect URI (repeatable)')
@click.option('--web-origin', 'web_origins', multiple=True, help='Allowed web origin (repeatable)')
@click.option('--realm', default=None, help='Target realm (default: KEYCLOAK_REALM)')
@click.option('--url', default=None, help='Keycloak base URL (default: admin URL from settings)')
@click.option('--username', default=None, help='Also create this user if absent')
@click.option('--email', default=None)
@click.option('--password', default=None)
@click.option('--forward-auth-output', type=click.Path(dir_okay=False), default=None,
              help='Write a forward-auth env file here')
@click.option('--auth-host', default=None, help='Host serving the forward-auth callback')
@click.option('--cookie-domain', default=None, help='Cookie domain for forward auth')
@click.pass_context
def register_client(ctx, client_id, name, redirect_uris, web_origins, realm, url, username,
                    email, password, forward_auth_output, auth_host, cookie_domain):
    """Create or update an OIDC client (and optionally a user)."""
    config = _config(ctx)
    realm = realm or config.realm
    admin = KeycloakAdminClient(url or config.admin_url)

    if forward_auth_output and not (auth_host and cookie_domain):
        _fail(ctx, "--forward-auth-output requires --auth-host and --cookie-domain")

    if not admin.is_reachable():
        _fail(ctx, f"Keycloak is not accessible at {admin.base_url}")

    registration = ClientRegistration(client_id=client_id, name=name,
                                      redirect_uris=list(redirect_uris), web_origins=list(web_origins))
    user = UserRegistration(username=username, email=email, password=password) if username else None
    try:
        admin.authenticate(config.admin_username, config.admin_password)
        result = ClientRegistrar(admin, realm).register(registration, user)
    except KcDeployError as e:
        _fail(ctx, e)
        return

    click.echo(f"Client '{client_id}' {result.client_action}.")
    if result.user_action:
        click.echo(f"User '{username}': {result.user_action}")

    if forward_auth_output:
        ForwardAuthEnvConverter(
            issuer=config.expected_issuer(realm),
            client_id=client_id,
            client_secret=result.client_secret,
            cookie_secret=secrets.token_hex(16),
            auth_host=auth_host,
            cookie_domain=cookie_domain,
        ).convert(forward_auth_output)
        click.echo(f"Forward auth configuration saved to: {forward_auth_output}")
    else:
        click.echo(f"Client secret: {result.client_secret}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
