#!/usr/bin/env python3
"""
CLI tool for the hot reconciler.
Edit the reconciler, follow its logs and feed it events from the terminal.
"""

import json
import time

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = "http://localhost:3000"


def server_error(exc: requests.exceptions.RequestException):
    """The ``error``/``detail`` message of an API error response, if any."""
    response = getattr(exc, "response", None)
    if response is None:
        return None
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        return body.get("error") or body.get("detail")
    return None


class ReconcilerCLI:
    """CLI client for the hot reconciler API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Call the API; prints the failure and returns None on any error."""
        try:
            response = requests.request(method, f"{self.base_url}{endpoint}", **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {server_error(e) or e}", err=True)
            return None

    def stream_logs(self):
        """Yield log lines from the SSE log channel until the server closes it."""
        url = f"{self.base_url}/api/logs"
        with requests.get(url, stream=True, timeout=(10, None)) as response:
            response.raise_for_status()
            for line in parse_sse(response.iter_lines(decode_unicode=True)):
                yield line


def parse_sse(lines):
    """Join the ``data:`` lines of each SSE message; yields one string per message."""
    data = []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith("data:"):
            value = line[len("data:") :]
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        yield "\n".join(data)


def load_manifest(filename):
    """Read a YAML or JSON file."""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return yaml.safe_load(f)
        return json.load(f)


@click.group()
@click.option(
    "--api-url",
    envvar="RCTL_API_URL",
    default=API_BASE_URL,
    show_default=True,
    help="Base URL of the hot reconciler API",
)
@click.pass_context
def cli(ctx, api_url):
    """Hot reconciler CLI - edit reconciliation logic while it runs"""
    ctx.obj = ReconcilerCLI(api_url)


@cli.group()
def code():
    """Read or replace the reconciler source"""
    pass


@code.command("get")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write to file")
@click.pass_obj
def code_get(client, output):
    """Print the current reconciler source"""
    result = client._make_request("GET", "/api/code")
    if result is None:
        raise SystemExit(1)

    if output:
        with open(output, "w", newline="") as f:
            f.write(result["code"])
        click.echo(f"Reconciler source written to {output}")
    else:
        click.echo(result["code"], nl=False)


@code.command("set")
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def code_set(client, filename):
    """Replace the reconciler source with the contents of a file"""
    with open(filename, "r", newline="") as f:
        source = f.read()

    result = client._make_request("POST", "/api/code", json={"code": source})
    if result is None:
        raise SystemExit(1)
    click.echo("Code updated successfully! It applies from the next event.")


@cli.command()
@click.pass_obj
def logs(client):
    """Follow the reconciliation log stream"""
    try:
        for line in client.stream_logs():
            click.echo(line)
    except requests.exceptions.RequestException as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except KeyboardInterrupt:
        click.echo("\nStopped following")


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--type",
    "event_type",
    type=click.Choice(["ADDED", "MODIFIED", "DELETED"], case_sensitive=False),
    default="ADDED",
    help="Event type when the file holds a bare resource",
)
@click.pass_obj
def emit(client, filename, event_type):
    """Queue a resource event from a YAML/JSON file"""
    data = load_manifest(filename)
    if not isinstance(data, dict):
        click.echo("Error: manifest must be a mapping", err=True)
        raise SystemExit(1)

    if "type" in data and "object" in data:
        event = data
    else:
        event = {"type": event_type.upper(), "object": data}

    result = client._make_request("POST", "/api/v1/events", json=event)
    if result is None:
        raise SystemExit(1)

    name = (event["object"].get("metadata") or {}).get("name", "unknown")
    click.echo(f"{event['type']} event for {name} queued (position {result['position']})")


@cli.command()
@click.option("--follow", "-f", is_flag=True, help="Follow status updates")
@click.option("--interval", "-i", default=5, help="Polling interval in seconds")
@click.pass_obj
def status(client, follow, interval):
    """Show the dispatcher state"""

    try:
        while True:
            result = client._make_request("GET", "/api/v1/dispatcher")
            if result is None and not follow:
                raise SystemExit(1)
            if result is not None:
                if follow:
                    click.clear()
                click.echo(tabulate(dispatcher_rows(result), tablefmt="grid"))
            if not follow:
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        click.echo("\nStopped following")


def dispatcher_rows(result):
    """Table rows for a /api/v1/dispatcher response."""
    rows = [
        ["State", result["state"]],
        ["Queued", result["queue_depth"]],
        ["Processed", result["processed"]],
        ["Failed", result["failed"]],
    ]
    last = result.get("last_outcome")
    if last:
        rows += [
            ["Last resource", last["resource"]],
            ["Last event", last["event_type"]],
            ["Last outcome", last["status"]],
        ]
        if last.get("message"):
            rows.append(["Message", last["message"]])
    return rows


if __name__ == "__main__":
    cli()
