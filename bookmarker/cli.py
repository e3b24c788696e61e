# bookmarker/cli.py
from __future__ import annotations

import asyncio
import json
from datetime import date
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import typer

from bookmarker.app import App, build_app, run_forever
from bookmarker.config import load_settings
from bookmarker.core.dedup import normalize_url
from bookmarker.core.log import setup_json_logger
from bookmarker.pipelines.commands import CommandResult
from bookmarker.pipelines.write import attachment_from_path

app = typer.Typer(add_completion=False, no_args_is_help=True, rich_markup_mode=None)
config_app = typer.Typer(help="Remote table credentials", no_args_is_help=True, rich_markup_mode=None)
app.add_typer(config_app, name="config")


def _run(fn: Callable[[App], Awaitable[Any]]) -> Any:
    cfg = load_settings()
    setup_json_logger(cfg.log.level)

    async def _main() -> Any:
        a = build_app(cfg)
        try:
            return await fn(a)
        finally:
            await a.aclose()

    return asyncio.run(_main())


def _echo(res: CommandResult) -> None:
    typer.echo(json.dumps(res.to_message(), ensure_ascii=False, indent=2))
    if not res.success:
        raise typer.Exit(code=1)


def _dispatch(action: str, payload: Any = None) -> None:
    _echo(_run(lambda a: a.commands.dispatch(action, payload)))


@app.command("normalize")
def normalize_cmd(url: str = typer.Argument(..., help="URL to canonicalize")) -> None:
    typer.echo(normalize_url(url))


@app.command("save")
def save_cmd(
    url: str = typer.Argument(..., help="Page URL"),
    title: str = typer.Option("", "--title", "-t"),
    notes: str = typer.Option("", "--notes", "-n"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", help="Repeatable"),
    project: Optional[List[str]] = typer.Option(None, "--project", "-p", help="Repeatable"),
    attach: Optional[List[Path]] = typer.Option(None, "--attach", "-a", exists=True, dir_okay=False, help="File to attach; repeatable"),
) -> None:
    payload = {
        "url": url,
        "title": title,
        "notes": notes,
        "tags": tag or [],
        "project": project or [],
        "attachments": [attachment_from_path(p).model_dump(by_alias=True) for p in attach or []],
    }
    _dispatch("saveBookmark", payload)


@app.command("save-link")
def save_link_cmd(
    link_url: str = typer.Argument(..., help="Link target"),
    page_title: str = typer.Option("", "--page-title", help="Title of the page the link was found on"),
    selection: str = typer.Option("", "--selection", "-s", help="Selected link text"),
) -> None:
    res = _run(lambda a: a.service.save_link(link_url, page_title=page_title, selection=selection))
    typer.echo(json.dumps({"status": res.status, "url": res.record.url}, ensure_ascii=False))


@app.command("list")
def list_cmd(
    page: int = typer.Option(1, "--page", min=1, show_default=True),
    page_size: int = typer.Option(20, "--page-size", min=1, show_default=True),
    search: str = typer.Option("", "--search", "-q", help="Substring of the title"),
    tag: Optional[List[str]] = typer.Option(None, "--tag"),
) -> None:
    _dispatch("getBookmarks", {"page": page, "pageSize": page_size, "search": search, "tags": tag or []})


@app.command("delete")
def delete_cmd(record_id: str = typer.Argument(..., help="Remote record id")) -> None:
    _dispatch("deleteBookmark", {"recordId": record_id})


@app.command("queue")
def queue_cmd() -> None:
    """Show writes waiting in the offline queue."""
    async def _pending(a: App):
        return a.queue.pending()

    items = _run(_pending)
    for it in items:
        typer.echo(json.dumps({
            "id": it.id,
            "url": it.payload.url,
            "title": it.payload.title,
            "retryCount": it.retry_count,
            "enqueuedAt": it.enqueued_at.isoformat(),
        }, ensure_ascii=False))
    if not items:
        typer.echo("queue empty")


@app.command("drain")
def drain_cmd() -> None:
    """Try to deliver everything in the offline queue once."""
    _dispatch("drainQueue")


@app.command("run")
def run_cmd() -> None:
    """Background process: drains the offline queue on a timer until interrupted."""
    try:
        _run(run_forever)
    except KeyboardInterrupt:
        typer.echo("stopped")


# ---------------- CONFIG ----------------

@config_app.command("show")
def config_show_cmd() -> None:
    _dispatch("getConfig")


@config_app.command("set")
def config_set_cmd(
    proxy_url: Optional[str] = typer.Option(None, "--proxy-url"),
    app_id: Optional[str] = typer.Option(None, "--app-id"),
    app_secret: Optional[str] = typer.Option(None, "--app-secret"),
    table_id: Optional[str] = typer.Option(None, "--table-id"),
    token: Optional[str] = typer.Option(None, "--token", help="Tenant access token"),
) -> None:
    update = {
        "proxyUrl": proxy_url,
        "appId": app_id,
        "appSecret": app_secret,
        "tableId": table_id,
        "tenantAccessToken": token,
    }
    _dispatch("updateConfig", {k: v for k, v in update.items() if v is not None})


@config_app.command("reset")
def config_reset_cmd(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")) -> None:
    if not yes and not typer.confirm("Clear all stored credentials?"):
        raise typer.Abort()
    _dispatch("updateConfig", {"proxyUrl": "", "appId": "", "appSecret": "", "tableId": "", "tenantAccessToken": ""})


@config_app.command("test")
def config_test_cmd() -> None:
    _dispatch("testConnection")


@config_app.command("export")
def config_export_cmd(
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Defaults to bookmarker-config-<date>.json"),
) -> None:
    """Write the config with secrets masked."""
    res = _run(lambda a: a.commands.dispatch("exportConfig"))
    target = out or Path(f"bookmarker-config-{date.today().isoformat()}.json")
    target.write_text(json.dumps(res.data, ensure_ascii=False, indent=2), encoding="utf-8")
    typer.echo(str(target))


@config_app.command("import")
def config_import_cmd(path: Path = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        typer.echo(f"not a JSON file: {e}", err=True)
        raise typer.Exit(code=1)
    _dispatch("importConfig", data)


if __name__ == "__main__":
    app()
