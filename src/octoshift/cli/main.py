"""Main CLI entry point for Octoshift."""

import sys
import json
import asyncio
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..api.client import AdoClient, ApiClient, ClientFactory, GithubClient
from ..api.pagination import path_selector
from ..config.config import Config
from ..utils.logging import OctoLogger, setup_logging
from ..utils.version import VersionChecker

ROOT_COMMAND = 'octoshift'

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name=ROOT_COMMAND)
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """Octoshift - Resilient API access for GitHub, Azure DevOps and Bitbucket Server."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    # Setup basic logging first (will be enhanced later with config)
    log_level = 'DEBUG' if verbose else 'INFO'
    setup_logging(log_level)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
@click.pass_context
def init(ctx: click.Context, output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]Octoshift[/bold green]\nInitializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your access tokens and server URLs[/yellow]'
        )

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command()
@click.argument('endpoint')
@click.option(
    '--backend',
    '-b',
    type=click.Choice(['github', 'ado', 'bbs']),
    default='github',
    show_default=True,
    help='Which API to call',
)
@click.option(
    '--method',
    '-X',
    type=click.Choice(['GET', 'POST', 'PUT', 'PATCH', 'DELETE'], case_sensitive=False),
    default='GET',
    show_default=True,
    help='HTTP method',
)
@click.option('--data', '-d', help='JSON request body')
@click.option(
    '--header',
    '-H',
    'headers',
    multiple=True,
    help='Extra request header as "Name: value" (repeatable)',
)
@click.option(
    '--paginate',
    is_flag=True,
    help='Follow pagination and print every item',
)
@click.pass_context
def api(
    ctx: click.Context,
    endpoint: str,
    backend: str,
    method: str,
    data: Optional[str],
    headers: Tuple[str, ...],
    paginate: bool,
) -> None:
    """Make a single API request and print the response."""
    logger = None
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)
        logger = _create_logger(ctx, config)

        body = json.loads(data) if data else None
        custom_headers = _parse_headers(headers)

        factory = ClientFactory(config, logger, _version_checker(ctx))
        client = factory.create(backend)
        result = asyncio.run(
            _run_api(client, method.upper(), endpoint, body, custom_headers, paginate)
        )
        _print_result(result)

    except Exception as e:
        _fail(ctx, logger, 'API request failed', e)


@cli.command()
@click.argument('query_file', type=click.Path(exists=True))
@click.option('--variables', help='JSON object of query variables')
@click.option('--url', help='GraphQL endpoint (defaults to the configured GitHub one)')
@click.option(
    '--items-path',
    help='Dotted path to the item array, e.g. data.organization.repositories.nodes',
)
@click.option(
    '--page-info-path',
    help='Dotted path to pageInfo, e.g. data.organization.repositories.pageInfo',
)
@click.option('--source', is_flag=True, help='Use the source GitHub settings')
@click.pass_context
def graphql(
    ctx: click.Context,
    query_file: str,
    variables: Optional[str],
    url: Optional[str],
    items_path: Optional[str],
    page_info_path: Optional[str],
    source: bool,
) -> None:
    """Post a GraphQL query to GitHub and print the result."""
    logger = None
    try:
        if bool(items_path) != bool(page_info_path):
            raise click.UsageError(
                '--items-path and --page-info-path must be used together'
            )

        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)
        logger = _create_logger(ctx, config)

        body: Dict[str, Any] = {
            'query': Path(query_file).read_text(encoding='utf-8'),
            'variables': json.loads(variables) if variables else {},
        }

        github = config.github_source if source and config.github_source else config.github
        graphql_url = url or github.graphql_url

        factory = ClientFactory(config, logger, _version_checker(ctx))
        client = factory.create_github_client(source=source)
        result = asyncio.run(
            _run_graphql(client, graphql_url, body, items_path, page_info_path)
        )
        _print_result(result)

    except click.UsageError:
        raise
    except Exception as e:
        _fail(ctx, logger, 'GraphQL request failed', e)


@cli.command(name='check-version')
@click.pass_context
def check_version(ctx: click.Context) -> None:
    """Compare the installed version with the latest release."""
    console.print(
        Panel.fit(
            '[bold cyan]Octoshift[/bold cyan]\nChecking version...',
            border_style='cyan',
        )
    )

    try:
        checker = _version_checker(ctx)
        latest = checker.get_latest_version()

        table = Table(title='Version')
        table.add_column('Installed', style='cyan')
        table.add_column('Latest', style='green')
        table.add_row(checker.get_current_version(), latest)
        console.print(table)

        if checker.is_latest():
            console.print('[green]✓[/green] You are running the latest version')
        else:
            console.print(
                f'[yellow]A newer version ({latest}) is available. '
                'Please update to get the latest fixes.[/yellow]'
            )

    except Exception as e:
        _fail(ctx, None, 'Version check failed', e)


async def _run_api(
    client: ApiClient,
    method: str,
    endpoint: str,
    body: Any,
    custom_headers: Dict[str, str],
    paginate: bool,
) -> Any:
    """Run one API request, or drain a paginated endpoint."""
    async with client:
        if paginate:
            if method != 'GET':
                raise click.UsageError('--paginate only supports GET requests')
            return [item async for item in _paginate(client, endpoint, custom_headers)]

        if method in ('GET', 'DELETE'):
            verb = client.get if method == 'GET' else client.delete
            text = await verb(endpoint, custom_headers=custom_headers)
        else:
            verb = {'POST': client.post, 'PUT': client.put, 'PATCH': client.patch}[method]
            text = await verb(endpoint, body, custom_headers=custom_headers)

    return _maybe_json(text)


def _paginate(client: ApiClient, endpoint: str, custom_headers: Dict[str, str]):
    if isinstance(client, GithubClient):
        return client.get_all(endpoint, custom_headers=custom_headers)
    if isinstance(client, AdoClient):
        return client.get_with_paging(endpoint)
    return client.get_all(endpoint)


async def _run_graphql(
    client: GithubClient,
    url: str,
    body: Dict[str, Any],
    items_path: Optional[str],
    page_info_path: Optional[str],
) -> Any:
    async with client:
        if not items_path:
            return await client.post_graphql(url, body)

        pages = client.post_graphql_with_pagination(
            url,
            body,
            result_selector=path_selector(items_path),
            page_info_selector=path_selector(page_info_path),
        )
        return [item async for item in pages]


def _parse_headers(headers: Tuple[str, ...]) -> Dict[str, str]:
    """Parse ``Name: value`` header options."""
    parsed = {}
    for header in headers:
        name, sep, value = header.partition(':')
        if not sep or not name.strip():
            raise click.BadParameter(f'Invalid header: {header}', param_hint='--header')
        parsed[name.strip()] = value.strip()
    return parsed


def _maybe_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _print_result(result: Any) -> None:
    if isinstance(result, str):
        console.print(result, markup=False)
    else:
        console.print_json(data=result)


def _fail(
    ctx: click.Context, logger: Optional[OctoLogger], action: str, error: Exception
) -> None:
    """Report a failed command and exit with status 1."""
    verbose = (ctx.obj or {}).get('verbose', False)
    logger = logger or OctoLogger(verbose=verbose)
    logger.log_error(error)
    console.print(f'[red]✗[/red] {action}: {logger.redact(str(error))}')
    if verbose:
        console.print_exception()
    sys.exit(1)


def _version_checker(ctx: click.Context) -> VersionChecker:
    return VersionChecker(root_command=ROOT_COMMAND, executing_command=ctx.info_name)


def _create_logger(ctx: click.Context, config: Config) -> OctoLogger:
    """Create the logger collaborator with every configured secret registered."""
    logger = OctoLogger(verbose=ctx.obj.get('verbose', False))
    for secret in config.secrets():
        logger.register_secret(secret)
    return logger


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)

    # Try to load from default locations
    default_paths: List[str] = ['config.yaml', 'config.yml', '.octoshift.yaml']
    for path in default_paths:
        if Path(path).exists():
            return Config.from_file(path)

    # Fall back to environment variables
    return Config.from_env()


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    verbose = ctx.obj.get('verbose', False)

    # Verbose flag overrides the configured level
    log_level = 'DEBUG' if verbose else config.logging.level

    setup_logging(
        level=log_level,
        log_file=config.logging.file,
        log_format=config.logging.format,
        verbose_log_file=config.logging.verbose_file,
    )


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
