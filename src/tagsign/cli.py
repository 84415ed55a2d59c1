"""
tagsign CLI
Entry points for the Puppet autosign policy executable and the tag tools.

Puppet calls a policy executable with the certname as its only argument and
the CSR on stdin. Exit status 0 means "sign", anything else means "don't".
"""

import logging
import os
import sys
from typing import Optional

import click

from .config import load_config
from .errors import ConfigurationInvalidError, TagSignError
from .identity.autosign import AutosignEngine
from .inventory.client import TagQueryClient
from .inventory.tags import split_tag
from .logging import configure_debug_log, configure_logging, get_logger, register_secret
from .lookup import LookupContext, TagLookupBackend
from .utils.config import settings

logger = get_logger(__name__)


def _config_paths(config_path: Optional[str]):
    return [config_path] if config_path else settings.config_paths()


def _load_config_or_exit(config_path: Optional[str]):
    try:
        config = load_config(_config_paths(config_path))
    except ConfigurationInvalidError as e:
        # Without a config we don't know where to log, so this goes to stderr
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    register_secret(config.challenge_password)
    for account in config.accounts:
        register_secret(account.password, account.oath2_token)
    return config


def _exit_now(code: int) -> None:
    """Exit without waiting for inventory threads still in flight."""
    logging.shutdown()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


def run_autosign(hostname: str, raw_csr: bytes, config_path: Optional[str] = None) -> int:
    """Load the config, decide, and return the process exit status."""
    config = _load_config_or_exit(config_path)

    if config.debug:
        try:
            configure_debug_log(config.debug)
        except OSError as e:
            click.echo(f"Warning: cannot open debug log: {e.strerror}", err=True)

    engine = AutosignEngine(config)
    result = engine.validate_with_timeout(raw_csr, hostname, settings.DECISION_TIMEOUT)

    logger.debug(f"Decision for {hostname}: {result.state.value} ({result.reason})")
    if not result.approved:
        click.echo(f"Not signing the request for {hostname}: {result.reason}", err=True)

    if engine.abandoned:
        # Interpreter exit would join the search threads; Puppet waits on us
        _exit_now(result.exit_code)
    engine.close()
    return result.exit_code


@click.group()
@click.option("--log-level", default=None, help="Logging level (default: TAGSIGN_LOG_LEVEL)")
def cli(log_level):
    """tagsign: inventory tag backed certificate autosigning."""
    configure_logging(level=log_level or settings.LOG_LEVEL)


@cli.command()
@click.argument("hostname")
@click.option("--config", "config_path", default=None, help="Path to the autosign config file")
def autosign(hostname, config_path):
    """Decide whether to sign the CSR read from stdin for HOSTNAME."""
    raw_csr = sys.stdin.buffer.read()
    sys.exit(run_autosign(hostname, raw_csr, config_path))


@cli.command()
@click.argument("tag")
@click.option("--no-dedup", is_flag=True, help="Keep one entry per matching instance")
@click.option("--config", "config_path", default=None, help="Path to the autosign config file")
def tags(tag, no_dedup, config_path):
    """Print every inventory tag matching TAG."""
    config = _load_config_or_exit(config_path)
    client = TagQueryClient.from_config(config)
    try:
        for name in client.get_tags_by_tag(tag, dedup=not no_dedup):
            click.echo(name)
    except TagSignError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    finally:
        client.close()


@cli.command()
@click.argument("key")
@click.option("--prefix", default=None, help="Lookup prefix (default: TAGSIGN_TAG_PREFIX)")
@click.option("--config", "config_path", default=None, help="Path to the autosign config file")
def lookup(key, prefix, config_path):
    """Print the values the lookup backend returns for KEY."""
    config = _load_config_or_exit(config_path)
    context = LookupContext.from_config(config, prefix=prefix)
    backend = TagLookupBackend(context)
    try:
        answer = backend.lookup(key)
    except TagSignError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    finally:
        context.client.close()

    if answer is None:
        click.echo(f"No answer for {key}", err=True)
        sys.exit(1)
    for value in answer:
        click.echo(value)


@cli.command("split")
@click.argument("tag")
def split_command(tag):
    """Show how TAG splits into namespace, predicate and value."""
    expression = split_tag(tag)
    click.echo(f"namespace: {expression.namespace}")
    click.echo(f"predicate: {expression.predicate if expression.predicate is not None else '-'}")
    click.echo(f"value:     {expression.value if expression.value is not None else '-'}")


@click.command()
@click.argument("hostname")
@click.option("--config", "config_path", default=None, help="Path to the autosign config file")
def autosign_policy(hostname, config_path):
    """Puppet autosign policy executable: echo <CSR> | tagsign-autosign <certname>"""
    configure_logging(level=settings.LOG_LEVEL)
    raw_csr = sys.stdin.buffer.read()
    sys.exit(run_autosign(hostname, raw_csr, config_path))


def main():
    """Main entry point for the CLI."""
    cli()


def autosign_main():
    """Entry point for the standalone policy executable."""
    autosign_policy()


if __name__ == "__main__":
    main()
