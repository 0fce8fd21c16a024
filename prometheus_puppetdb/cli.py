"""CLI commands for prometheus-puppetdb."""

from pathlib import Path
from typing import Optional

import typer

from prometheus_puppetdb import __version__
from prometheus_puppetdb.config import (
    CONFIG_FILE,
    Config,
    ConfigError,
    apply_overrides,
    load_config,
)
from prometheus_puppetdb.display import (
    display_config,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from prometheus_puppetdb.outputs import StdoutOutput
from prometheus_puppetdb.poller import PollError, TargetsPoller, setup_logging

app = typer.Typer(
    name="prometheus-puppetdb",
    help="Prometheus scrape lists based on PuppetDB.",
    add_completion=False,
)
config_app = typer.Typer(help="Configuration commands")
app.add_typer(config_app, name="config")

SETTINGS_OPTION = typer.Option(
    CONFIG_FILE, "--settings", envvar="PROMETHEUS_PUPPETDB_SETTINGS",
    help="YAML settings file"
)


def render_manpage() -> str:
    """Render a roff manual page from the ``run`` options."""
    run_command = typer.main.get_command(app).commands["run"]
    lines = [
        f'.TH PROMETHEUS-PUPPETDB 1 "" "prometheus-puppetdb {__version__}"',
        ".SH NAME",
        "prometheus-puppetdb \\- Prometheus scrape lists based on PuppetDB",
        ".SH SYNOPSIS",
        ".B prometheus-puppetdb run",
        "[\\fIOPTIONS\\fR]",
        ".SH OPTIONS",
    ]
    for param in run_command.params:
        if param.param_type_name != "option":
            continue
        flags = ", ".join(opt.replace("-", "\\-") for opt in param.opts)
        description = param.help or ""
        if param.envvar:
            description += f" Environment: {param.envvar}."
        lines.extend([".TP", f"\\fB{flags}\\fR", description])
    return "\n".join(lines) + "\n"


def version_callback(value: bool):
    if value:
        typer.echo(f"Prometheus-puppetdb v{__version__}")
        raise typer.Exit()


def manpage_callback(value: bool):
    if value:
        typer.echo(render_manpage(), nl=False)
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-V",
        callback=version_callback, is_eager=True,
        help="Display version."
    ),
    manpage: Optional[bool] = typer.Option(
        None, "--manpage", "-m",
        callback=manpage_callback, is_eager=True,
        help="Display the manual page."
    ),
):
    """Prometheus scrape lists based on PuppetDB."""


def build_config(settings: Path, **overrides) -> Config:
    """Load the settings file and apply flag/env overrides.

    Exits with status 2 on configuration errors.
    """
    try:
        return apply_overrides(load_config(settings), overrides)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(2)


def run_poller(config: Config, output=None) -> None:
    setup_logging(config)
    if config.ssl_skip_verify:
        print_warning("SSL verification is disabled")

    try:
        poller = TargetsPoller(config, output=output)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(2)

    if not poller.output.one_shot:
        print_info(
            f"Polling {config.puppetdb_url} every {config.sleep:g}s (output: {config.output})"
        )

    try:
        poller.run()
    except PollError as e:
        print_error(f"Polling stopped: {e}")
        raise typer.Exit(1)

    if not poller.output.one_shot:
        print_success("Poller stopped")


@app.command()
def run(
    settings: Path = SETTINGS_OPTION,
    puppetdb_url: Optional[str] = typer.Option(
        None, "--puppetdb-url", "-u", envvar="PROMETHEUS_PUPPETDB_URL",
        help="PuppetDB base URL."
    ),
    cert_file: Optional[str] = typer.Option(
        None, "--cert-file", "-x", envvar="PROMETHEUS_CERT_FILE",
        help="A PEM encoded certificate file."
    ),
    key_file: Optional[str] = typer.Option(
        None, "--key-file", "-y", envvar="PROMETHEUS_KEY_FILE",
        help="A PEM encoded private key file."
    ),
    cacert_file: Optional[str] = typer.Option(
        None, "--cacert-file", "-z", envvar="PROMETHEUS_CACERT_FILE",
        help="A PEM encoded CA's certificate file."
    ),
    ssl_skip_verify: bool = typer.Option(
        False, "--ssl-skip-verify", "-k", envvar="PROMETHEUS_SSL_SKIP_VERIFY",
        help="Skip SSL verification."
    ),
    query: Optional[str] = typer.Option(
        None, "--puppetdb-query", "-q", envvar="PROMETHEUS_PUPPETDB_QUERY",
        help="PuppetDB query."
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", envvar="PROMETHEUS_PUPPETDB_OUTPUT",
        help="Output. One of stdout, file, configmap or external-services."
    ),
    file: Optional[str] = typer.Option(
        None, "--config-file", "-f", envvar="PROMETHEUS_PUPPETDB_FILE",
        help="Prometheus target file."
    ),
    configmap: Optional[str] = typer.Option(
        None, "--configmap", envvar="PROMETHEUS_PUPPETDB_CONFIGMAP",
        help="Kubernetes ConfigMap to update."
    ),
    namespace: Optional[str] = typer.Option(
        None, "--namespace", envvar="PROMETHEUS_PUPPETDB_NAMESPACE",
        help="Kubernetes NameSpace to use."
    ),
    object_labels: Optional[list[str]] = typer.Option(
        None, "--object-label", envvar="PROMETHEUS_PUPPETDB_OBJECT_LABELS",
        help="Label (key=value) selecting managed Kubernetes Services. Repeatable."
    ),
    sleep: Optional[str] = typer.Option(
        None, "--sleep", "-s", envvar="PROMETHEUS_PUPPETDB_SLEEP",
        help="Sleep time between queries (e.g. 5s, 1m)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", envvar="PROMETHEUS_PUPPETDB_TIMEOUT",
        help="PuppetDB request timeout in seconds."
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", envvar="PROMETHEUS_PUPPETDB_LOG_LEVEL",
        help="Log level (DEBUG, INFO, WARNING, ERROR)."
    ),
):
    """Query PuppetDB and write scrape targets to the configured output."""
    config = build_config(
        settings,
        puppetdb_url=puppetdb_url,
        cert_file=cert_file,
        key_file=key_file,
        cacert_file=cacert_file,
        ssl_skip_verify=ssl_skip_verify or None,
        query=query,
        output=output,
        file=file,
        configmap=configmap,
        namespace=namespace,
        object_labels=object_labels or None,
        sleep=sleep,
        timeout=timeout,
        log_level=log_level,
    )
    run_poller(config)


@app.command()
def targets(
    settings: Path = SETTINGS_OPTION,
    puppetdb_url: Optional[str] = typer.Option(
        None, "--puppetdb-url", "-u", envvar="PROMETHEUS_PUPPETDB_URL",
        help="PuppetDB base URL."
    ),
    cert_file: Optional[str] = typer.Option(
        None, "--cert-file", "-x", envvar="PROMETHEUS_CERT_FILE",
        help="A PEM encoded certificate file."
    ),
    key_file: Optional[str] = typer.Option(
        None, "--key-file", "-y", envvar="PROMETHEUS_KEY_FILE",
        help="A PEM encoded private key file."
    ),
    cacert_file: Optional[str] = typer.Option(
        None, "--cacert-file", "-z", envvar="PROMETHEUS_CACERT_FILE",
        help="A PEM encoded CA's certificate file."
    ),
    ssl_skip_verify: bool = typer.Option(
        False, "--ssl-skip-verify", "-k", envvar="PROMETHEUS_SSL_SKIP_VERIFY",
        help="Skip SSL verification."
    ),
    query: Optional[str] = typer.Option(
        None, "--puppetdb-query", "-q", envvar="PROMETHEUS_PUPPETDB_QUERY",
        help="PuppetDB query."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", envvar="PROMETHEUS_PUPPETDB_TIMEOUT",
        help="PuppetDB request timeout in seconds."
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", envvar="PROMETHEUS_PUPPETDB_LOG_LEVEL",
        help="Log level (DEBUG, INFO, WARNING, ERROR)."
    ),
):
    """Print scrape targets to stdout once."""
    config = build_config(
        settings,
        puppetdb_url=puppetdb_url,
        cert_file=cert_file,
        key_file=key_file,
        cacert_file=cacert_file,
        ssl_skip_verify=ssl_skip_verify or None,
        query=query,
        timeout=timeout,
        log_level=log_level,
        output="stdout",
    )
    run_poller(config, output=StdoutOutput())


@app.command()
def version():
    """Show version information."""
    typer.echo(f"Prometheus-puppetdb v{__version__}")


# Config subcommands
@config_app.command("show")
def config_show(settings: Path = SETTINGS_OPTION):
    """Show effective configuration."""
    config = build_config(settings)
    display_config(config.model_dump())


if __name__ == "__main__":
    app()
