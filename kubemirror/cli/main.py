"""kubemirror command-line interface.

Commands:
    kubemirror run                       Run the controller in the foreground.
    kubemirror list [--namespace NS]     List mirrored resources via the REST API.
    kubemirror get <namespace/name>      Show one mirrored resource.
    kubemirror version                   Print version and exit.

``list`` and ``get`` call the REST API at http://localhost:8080 (configurable
via ``--api-url``).
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click
import httpx

from kubemirror import __version__

_DEFAULT_API_URL = "http://localhost:8080"
_HTTP_TIMEOUT_S = 10.0

# ---------------------------------------------------------------------------
# REST client
# ---------------------------------------------------------------------------


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
    """GET ``path`` from the kubemirror API and decode the JSON body.

    Connection failures and error envelopes become ``click.ClickException``
    so click prints them as ``Error: ...`` and exits 1.
    """
    base = api_url.rstrip("/")
    try:
        with httpx.Client(base_url=base, timeout=_HTTP_TIMEOUT_S) as client:
            resp = client.get(path, params=params)
    except httpx.ConnectError as err:
        raise click.ClickException(f"Cannot connect to kubemirror API at {base}; is the controller running?") from err

    if resp.is_error:
        raise click.ClickException(_describe_error(resp))
    body: dict[str, Any] = resp.json()
    return body


def _describe_error(resp: httpx.Response) -> str:
    try:
        envelope = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}: {resp.text[:200]}"
    return f"{envelope.get('error', 'ERROR')}: {envelope.get('detail', 'no detail')}"


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="KUBEMIRROR_API_URL",
    show_default=True,
    help="kubemirror REST API base URL.",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """kubemirror: local mirror of Kubernetes workloads."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command("version")
def cmd_version() -> None:
    """Print the kubemirror version and exit."""
    click.echo(f"kubemirror {__version__}")


@cli.command("run")
def cmd_run() -> None:
    """Run the controller until SIGINT/SIGTERM.

    Configuration is read from KUBEMIRROR_* environment variables.
    """
    from kubemirror.app import main

    asyncio.run(main())


# ---------------------------------------------------------------------------
# kubemirror list
# ---------------------------------------------------------------------------


@cli.command("list")
@click.option("--namespace", "-n", default=None, help="Only show resources in this namespace.")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print raw JSON response.")
@click.pass_context
def cmd_list(ctx: click.Context, namespace: str | None, output_json: bool) -> None:
    """List mirrored resources, sorted by namespace/name."""
    params = {"namespace": namespace} if namespace else None
    data = _get(ctx.obj["api_url"], "/api/v1/resources", params)

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    if not data.get("synced", False):
        click.echo(click.style("Cache is still syncing; the list may be incomplete.", fg="yellow"))

    items: list[dict[str, object]] = data.get("items", [])  # type: ignore[assignment]
    if not items:
        click.echo(f"No {data.get('kind', 'resources')} found.")
        return

    _print_table(items)


def _print_table(items: list[dict[str, object]]) -> None:
    headers = ("NAMESPACE", "NAME", "READY", "GENERATION")
    rows = [
        (
            str(item.get("namespace", "")),
            str(item.get("name", "")),
            str(item.get("ready", "")) or "-",
            str(item.get("generation", "")),
        )
        for item in items
    ]
    widths = [max(len(h), *(len(r[i]) for r in rows)) for i, h in enumerate(headers)]
    click.echo(click.style("  ".join(h.ljust(w) for h, w in zip(headers, widths, strict=True)), bold=True))
    for row in rows:
        click.echo("  ".join(c.ljust(w) for c, w in zip(row, widths, strict=True)).rstrip())


# ---------------------------------------------------------------------------
# kubemirror get
# ---------------------------------------------------------------------------


@cli.command("get")
@click.argument("resource")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print raw JSON response.")
@click.pass_context
def cmd_get(ctx: click.Context, resource: str, output_json: bool) -> None:
    """Show the cached state of RESOURCE (namespace/name)."""
    parts = resource.split("/")
    if len(parts) != 2 or not all(parts):
        raise click.UsageError(f"RESOURCE must be in namespace/name format, got: {resource!r}")

    data = _get(ctx.obj["api_url"], f"/api/v1/resources/{parts[0]}/{parts[1]}")

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(click.style(f"{data.get('kind', '?')} {data.get('key', resource)}", bold=True))
    click.echo(f"  Resource version: {data.get('resource_version', '')}")
    click.echo(f"  Generation:       {data.get('generation', '')}")
    click.echo(f"  Observed at:      {data.get('observed_at', '')}")
    labels: dict[str, object] = data.get("labels", {})  # type: ignore[assignment]
    if labels:
        click.echo("  Labels:")
        for k in sorted(labels):
            click.echo(f"    {k}={labels[k]}")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
