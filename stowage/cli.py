"""Stowage CLI - Main Entry Point.

Commands:
    serve         - Serve an upload endpoint for a configured policy
    check-policy  - Validate and summarize a configured policy
    show-config   - Print the merged configuration
"""

import json
import logging
import sys
from typing import Optional, Tuple

import click

from . import __version__
from .asgi import ASGIAdapter, RequestCtx
from .config import ConfigError, ConfigLoader, StowageConfig
from .identity import KeyMode
from .middleware import ExceptionMiddleware, LoggingMiddleware, MiddlewareStack, RequestIdMiddleware
from .request import Request
from .response import Response
from .uploads import Stowage


def build_app(config: StowageConfig, policy_name: str, *, debug: bool = False, stowage: Optional[Stowage] = None) -> ASGIAdapter:
    """
    ASGI app that ingests every POST with the named policy and answers with
    the accepted-file list as JSON.
    """
    stowage = stowage or Stowage.from_config(config)
    upload = stowage.upload(stowage.named_policy(policy_name))

    async def echo_files(request: Request, ctx: RequestCtx) -> Response:
        return Response.json(
            {"files": [f.to_dict() for f in request.files or ()]},
            status=201,
        )

    async def post_only(request: Request, ctx: RequestCtx, next) -> Response:
        if request.method != "POST":
            await request.drain()
            return Response.json(
                {"error": {"code": "METHOD_NOT_ALLOWED", "message": "Use POST to upload files"}},
                status=405,
                headers={"allow": "POST"},
            )
        return await next(request, ctx)

    stack = MiddlewareStack()
    stack.add(RequestIdMiddleware(), priority=10, name="request_id")
    stack.add(LoggingMiddleware(), priority=20, name="logging")
    stack.add(ExceptionMiddleware(debug=debug), priority=30, name="exceptions")
    stack.add(post_only, priority=40)
    stack.add(upload, priority=50)

    return ASGIAdapter(
        echo_files,
        stack,
        services=[stowage],
        max_body_size=config.max_body_size,
    )


def _load(ctx: click.Context) -> Tuple[ConfigLoader, StowageConfig]:
    obj = ctx.obj
    try:
        loader = ConfigLoader.load(paths=list(obj["config"]), env_file=obj["env_file"])
        return loader, loader.get_stowage_config()
    except ConfigError as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(version=__version__, prog_name="stowage")
@click.option("--config", "-c", multiple=True, help="Config file (JSON or YAML); repeatable")
@click.option("--env-file", default=".env", show_default=True, help="Path to .env file")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, config, env_file: str, log_level: str):
    """Stowage - request-body upload ingestion."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["env_file"] = env_file
    ctx.obj["log_level"] = log_level


@cli.command()
@click.argument("policy")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--debug", is_flag=True, help="Include fault details in error responses")
@click.pass_context
def serve(ctx: click.Context, policy: str, host: str, port: int, debug: bool):
    """Serve an upload endpoint for POLICY."""
    try:
        import uvicorn
    except ImportError:
        raise ImportError(
            "uvicorn is required to run the server.\n"
            "Install it with: pip install uvicorn"
        )

    _, config = _load(ctx)
    try:
        app = build_app(config, policy, debug=debug)
    except ConfigError as e:
        raise click.ClickException(str(e))

    click.echo(f"Serving policy '{policy}' on http://{host}:{port} (store: {config.store_backend})")
    uvicorn.run(app, host=host, port=port, log_level=ctx.obj["log_level"])


@cli.command("check-policy")
@click.argument("policy")
@click.pass_context
def check_policy(ctx: click.Context, policy: str):
    """Validate POLICY and print its resolved form."""
    loader, config = _load(ctx)
    try:
        resolved = loader.get_policy(policy).resolve()
        if resolved.stream_to_store and KeyMode.parse(config.key_mode) is not KeyMode.TOKEN:
            raise ConfigError("stream_to_store requires key_mode 'token'")
    except ConfigError as e:
        raise click.ClickException(f"Policy '{policy}' is invalid: {e}")

    click.echo(f"Policy '{policy}' is valid")
    click.echo(f"  json ingestion:     {'enabled' if resolved.json_enabled else 'disabled'}")
    click.echo(f"  undeclared fields:  {'allowed' if resolved.allow_undeclared_fields else 'rejected'}")
    click.echo(f"  global file limit:  {resolved.default_file_limit or 'none'}")
    click.echo(f"  global mimetypes:   {', '.join(resolved.default_mimetypes) or 'any'}")
    click.echo(f"  mimetype match:     {resolved.mimetype_match.value}")
    for rule in resolved.rules.values():
        mimetypes = ", ".join(rule.mimetypes) or "global"
        click.echo(f"  field {rule.field_name}: up to {rule.file_limit} file(s), mimetypes: {mimetypes}")


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context):
    """Print the merged configuration as JSON."""
    loader, _ = _load(ctx)
    click.echo(json.dumps(loader.to_dict(), indent=2, sort_keys=True, default=str))


def main():
    cli(obj={})


if __name__ == "__main__":
    sys.exit(main())
