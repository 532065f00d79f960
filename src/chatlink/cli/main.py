"""Chatlink CLI: manage a chatbot's channel integrations from the terminal."""

from __future__ import annotations

import json
import time

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="chatlink",
    help="Chatlink: connect a chatbot to its channels",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:8000"

_STATUS_STYLES = {
    "connected": "green",
    "pending": "yellow",
    "error": "red",
    "disconnected": "dim",
}

UrlOption = typer.Option(DEFAULT_URL, "--url", "-u", envvar="CHATLINK_URL")
ApiKeyOption = typer.Option("", "--api-key", "-k", envvar="CHATLINK_API_KEY")


def _get_client(base_url: str, api_key: str | None) -> httpx.Client:
    headers = {}
    if api_key:
        headers["X-API-Key"] = api_key
    return httpx.Client(base_url=base_url, headers=headers, timeout=30.0)


def _request(client: httpx.Client, method: str, path: str, **kwargs) -> httpx.Response:
    try:
        resp = client.request(method, path, **kwargs)
        resp.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] Chatlink is not running at {client.base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        detail = e.response.text
        try:
            detail = e.response.json().get("detail", detail)
        except ValueError:
            pass
        console.print(f"[red]Error {e.response.status_code}:[/red] {detail}")
        raise typer.Exit(1)
    return resp


def _parse_settings(pairs: list[str]) -> dict[str, str]:
    settings: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            console.print(f"[red]Invalid setting:[/red] {pair} (expected key=value)")
            raise typer.Exit(1)
        settings[key.strip()] = value.strip()
    return settings


def _render_channel(channel: dict) -> None:
    style = _STATUS_STYLES.get(channel["status"], "white")
    line = f"[bold]{channel['type']}[/bold]  [{style}]{channel['status']}[/{style}]"
    if channel.get("error_message"):
        line += f"  [red]{channel['error_message']}[/red]"
    console.print(line)


@app.command()
def status(base_url: str = UrlOption, api_key: str = ApiKeyOption) -> None:
    """Check the server's status."""
    client = _get_client(base_url, api_key or None)
    data = _request(client, "GET", "/health").json()

    table = Table(title="Chatlink Status", show_header=False, border_style="blue")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Status", f"[green]{data['status']}[/green]")
    table.add_row("Version", data.get("version", "?"))
    table.add_row("Uptime", f"{data.get('uptime_seconds', '?')}s")
    table.add_row("Channel types", ", ".join(data.get("channel_types", [])))

    console.print()
    console.print(table)
    console.print()


@app.command()
def types(base_url: str = UrlOption, api_key: str = ApiKeyOption) -> None:
    """List supported channel types and what they need."""
    client = _get_client(base_url, api_key or None)
    data = _request(client, "GET", "/v1/channel-types").json()

    table = Table(title="Channel types", border_style="blue")
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Config fields")
    table.add_column("Embed", justify="center")
    for item in data["channel_types"]:
        table.add_row(
            item["type"],
            item["name"],
            ", ".join(item.get("config_fields", [])) or "-",
            "✓" if item.get("supports_embed") else "",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def channels(
    chatbot_id: str = typer.Argument(..., help="Chatbot ID"),
    base_url: str = UrlOption,
    api_key: str = ApiKeyOption,
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON response"),
) -> None:
    """Show every channel of a chatbot with its status and metrics."""
    client = _get_client(base_url, api_key or None)
    data = _request(client, "GET", f"/v1/chatbots/{chatbot_id}/channels").json()

    if raw:
        console.print_json(json.dumps(data, indent=2))
        return

    table = Table(title=f"Channels for {chatbot_id}", border_style="blue")
    table.add_column("Type", style="cyan")
    table.add_column("Status")
    table.add_column("Messages", justify="right")
    table.add_column("Response rate", justify="right")
    table.add_column("Last sync")
    table.add_column("Error")
    for channel in data["channels"]:
        style = _STATUS_STYLES.get(channel["status"], "white")
        table.add_row(
            channel["type"],
            f"[{style}]{channel['status']}[/{style}]",
            str(channel["metrics"]["total_messages"]),
            f"{channel['metrics']['response_rate']:.1f}%",
            (channel.get("last_sync_at") or "")[:16],
            channel.get("error_message") or "",
        )

    summary = data["summary"]
    console.print()
    console.print(table)
    console.print(
        f"[dim]connected: {summary['connected_count']}  │  "
        f"messages: {summary['total_messages']}  │  "
        f"avg response rate: {summary['average_response_rate']:.1f}%  │  "
        f"active users: {summary['total_active_users']}[/dim]"
    )
    console.print()


@app.command()
def configure(
    chatbot_id: str = typer.Argument(..., help="Chatbot ID"),
    channel_type: str = typer.Argument(..., help="Channel type, e.g. telegram"),
    settings: list[str] = typer.Option([], "--set", "-s", help="Config value as key=value"),
    base_url: str = UrlOption,
    api_key: str = ApiKeyOption,
) -> None:
    """Replace a channel's credentials/config."""
    client = _get_client(base_url, api_key or None)
    data = _request(
        client,
        "PUT",
        f"/v1/chatbots/{chatbot_id}/channels/{channel_type}/config",
        json={"config": _parse_settings(settings)},
    ).json()
    console.print(f"[green]✓[/green] Updated {channel_type} config")
    _render_channel(data["channel"])


@app.command()
def connect(
    chatbot_id: str = typer.Argument(..., help="Chatbot ID"),
    channel_type: str = typer.Argument(..., help="Channel type, e.g. whatsapp"),
    base_url: str = UrlOption,
    api_key: str = ApiKeyOption,
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait until validation finishes"),
    poll_interval: float = typer.Option(0.5, "--poll-interval", help="Seconds between status checks"),
) -> None:
    """Start connecting a channel."""
    client = _get_client(base_url, api_key or None)
    channel = _request(
        client, "POST", f"/v1/chatbots/{chatbot_id}/channels/{channel_type}/connect"
    ).json()["channel"]
    _render_channel(channel)

    while wait and channel["status"] == "pending":
        time.sleep(poll_interval)
        listing = _request(client, "GET", f"/v1/chatbots/{chatbot_id}/channels").json()
        channel = next(c for c in listing["channels"] if c["type"] == channel["type"])
    if wait:
        _render_channel(channel)
        if channel["status"] == "error":
            raise typer.Exit(1)


@app.command()
def disconnect(
    chatbot_id: str = typer.Argument(..., help="Chatbot ID"),
    channel_type: str = typer.Argument(..., help="Channel type"),
    base_url: str = UrlOption,
    api_key: str = ApiKeyOption,
) -> None:
    """Disconnect a channel."""
    client = _get_client(base_url, api_key or None)
    data = _request(
        client, "POST", f"/v1/chatbots/{chatbot_id}/channels/{channel_type}/disconnect"
    ).json()
    _render_channel(data["channel"])


@app.command()
def test(
    chatbot_id: str = typer.Argument(..., help="Chatbot ID"),
    channel_type: str = typer.Argument(..., help="Channel type"),
    base_url: str = UrlOption,
    api_key: str = ApiKeyOption,
) -> None:
    """Run a health check against a connected channel."""
    client = _get_client(base_url, api_key or None)
    data = _request(client, "POST", f"/v1/chatbots/{chatbot_id}/channels/{channel_type}/test").json()
    if data["passed"]:
        console.print(f"[green]✓[/green] {channel_type} connection test passed")
    else:
        console.print(f"[red]✗[/red] {channel_type} connection test failed")
        _render_channel(data["channel"])
        raise typer.Exit(1)


@app.command()
def embed(
    chatbot_id: str = typer.Argument(..., help="Chatbot ID"),
    channel_type: str = typer.Argument("website", help="website or shopify"),
    base_url: str = UrlOption,
    api_key: str = ApiKeyOption,
) -> None:
    """Print the snippet to paste into a site or Shopify theme."""
    client = _get_client(base_url, api_key or None)
    snippet = _request(
        client, "GET", f"/v1/chatbots/{chatbot_id}/channels/{channel_type}/embed-code"
    ).text
    console.print(snippet, markup=False, highlight=False)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the Chatlink server (for development)."""
    import uvicorn

    console.print(Panel("Starting Chatlink server...", border_style="blue"))
    uvicorn.run(
        "chatlink.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def version() -> None:
    """Show Chatlink version."""
    from chatlink import __version__

    console.print(f"Chatlink v{__version__}")


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
