import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from topicquota.clients.mirror import MirrorNodeClient
from topicquota.core.config import MirrorConfig, load_mirror_config, load_operator_config, load_quota_config
from topicquota.core.errors import TopicQuotaError
from topicquota.core.use_cases.read_topic import TopicReadService
from topicquota.projection.projector import list_projects, project_quota, project_subscription
from topicquota.workflow.usage import find_license

console = Console()

T = TypeVar("T")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _run(ctx: click.Context, fn: Callable[[TopicReadService, MirrorNodeClient], Awaitable[T]]) -> T:
    config: MirrorConfig = ctx.obj["mirror"]

    async def go() -> T:
        client = MirrorNodeClient.from_config(config)
        try:
            reader = TopicReadService(client, page_size=config.page_size)
            return await fn(reader, client)
        finally:
            await client.aclose()

    try:
        return asyncio.run(go())
    except TopicQuotaError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--network", type=click.Choice(["mainnet", "testnet", "previewnet"]), default=None, help="Ledger network (default: $HEDERA_NETWORK or testnet)")
@click.option("--mirror-url", default=None, help="Mirror node base URL override")
@click.option("--limit", type=int, default=None, help="Entries fetched per topic read")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, network: str | None, mirror_url: str | None, limit: int | None, verbose: bool) -> None:
    """topicquota: licenses and usage quotas recorded on consensus topics."""
    _setup_logging(verbose)
    try:
        config = load_mirror_config()
    except TopicQuotaError as e:
        raise click.ClickException(str(e)) from e
    overrides: dict[str, Any] = {}
    if network:
        overrides["network"] = network
    if mirror_url:
        overrides["base_url"] = mirror_url
    if limit:
        overrides["page_size"] = limit
    ctx.ensure_object(dict)
    ctx.obj["mirror"] = replace(config, **overrides)


@cli.command("messages")
@click.argument("topic_id")
@click.option("--json", "as_json", is_flag=True, help="Print decoded messages as JSON lines")
@click.pass_context
def messages_cmd(ctx: click.Context, topic_id: str, as_json: bool) -> None:
    """Reconstruct and list the decoded messages of a topic."""

    async def fetch(reader: TopicReadService, _client: MirrorNodeClient):
        return await reader.read_with_stats(topic_id, use_cache=False)

    result = _run(ctx, fetch)
    if as_json:
        for m in result.messages:
            click.echo(json.dumps({"type": m.type, "timestamp": m.timestamp, "sequence_number": m.sequence_number, "content": m.content}))
        return

    table = Table(title=f"Topic {topic_id}")
    table.add_column("seq", justify="right")
    table.add_column("consensus timestamp")
    table.add_column("type")
    table.add_column("content", overflow="fold")
    for m in result.messages:
        table.add_row(str(m.sequence_number or ""), m.timestamp, m.type, json.dumps(m.content, ensure_ascii=False))
    console.print(table)
    s = result.stats
    console.print(
        f"[bold]{len(result.messages)}[/] messages from {s.entries} entries "
        f"(repaired={s.repaired}, discarded={s.discarded}, incomplete groups={s.groups_incomplete})"
    )
    if s.has_more:
        console.print("[yellow]more entries exist beyond this page; raise --limit to read them[/]")


@cli.command("quota")
@click.argument("topic_id")
@click.pass_context
def quota_cmd(ctx: click.Context, topic_id: str) -> None:
    """Show the remaining usage quota of a topic."""
    quota_config = load_quota_config()

    async def fetch(reader: TopicReadService, _client: MirrorNodeClient):
        return project_quota(await reader.read(topic_id, use_cache=False), config=quota_config)

    view = _run(ctx, fetch)
    if view is None:
        raise click.ClickException(f"no usage quota recorded on topic {topic_id}")
    suffix = " (new topic default)" if view.bootstrap else f" as of {view.as_of}"
    console.print(f"Remaining quota for [bold]{topic_id}[/]: [bold green]{view.remaining}[/]{suffix}")


@cli.command("subscription")
@click.argument("topic_id")
@click.pass_context
def subscription_cmd(ctx: click.Context, topic_id: str) -> None:
    """Show the latest subscription recorded on a license topic."""

    async def fetch(reader: TopicReadService, _client: MirrorNodeClient):
        return project_subscription(await reader.read(topic_id, use_cache=False))

    view = _run(ctx, fetch)
    if view is None:
        raise click.ClickException(f"no subscription recorded on topic {topic_id}")
    state = "[green]active[/]" if view.active else ("[red]expired[/]" if view.expired else view.status)
    console.print(f"Subscription {view.subscription_id}: {state}")
    console.print(f"  expires:  {view.expires_at.isoformat() if view.expires_at else '-'}")
    console.print(f"  projects: {view.project_limit}  messages: {view.message_limit}")
    if view.payment_transaction_id:
        console.print(f"  payment:  {view.payment_transaction_id}")


@cli.command("projects")
@click.argument("topic_id")
@click.pass_context
def projects_cmd(ctx: click.Context, topic_id: str) -> None:
    """List the projects recorded on a license topic."""

    async def fetch(reader: TopicReadService, _client: MirrorNodeClient):
        return list_projects(await reader.read(topic_id, use_cache=False))

    projects = _run(ctx, fetch)
    table = Table(title=f"Projects on {topic_id}")
    table.add_column("name")
    table.add_column("topic")
    table.add_column("owner")
    table.add_column("quota", justify="right")
    table.add_column("created")
    for p in projects:
        table.add_row(
            p.name,
            p.topic_id or "-",
            p.owner_account_id or "-",
            "-" if p.usage_quota is None else str(p.usage_quota),
            p.created_at or p.timestamp,
        )
    console.print(table)


@cli.command("license")
@click.argument("account_id")
@click.option("--token-id", default=None, help="License token id (default: $LICENSE_TOKEN_ID)")
@click.pass_context
def license_cmd(ctx: click.Context, account_id: str, token_id: str | None) -> None:
    """Find the license held by an account."""
    operator = load_operator_config()

    async def fetch(reader: TopicReadService, client: MirrorNodeClient):
        return await find_license(
            account_id,
            token_id or operator.require_license_token(),
            queries=client,
            reader=reader,
        )

    lookup = _run(ctx, fetch)
    if not lookup.valid or lookup.license is None:
        raise click.ClickException(lookup.error or "no license found")
    lic = lookup.license
    console.print(f"License [bold]{lic.token_id}#{lic.serial_number}[/] for {account_id}")
    console.print(f"  topic:   {lic.topic_id or '-'}")
    console.print(f"  issued:  {lic.timestamp}")


if __name__ == "__main__":
    cli()
