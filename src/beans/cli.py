"""beans CLI: issue tracker backed by Markdown files.

Commands:
    beans init                 create .beans.toml + .beans/
    beans create TITLE         create a bean, print its ID
    beans list                 filter/sort beans (table, --json or -q)
    beans show ID              dump one bean
    beans update ID            change status, type, priority, title, tags, links
    beans delete ID            delete a bean
    beans archive              delete every bean with an archive status
    beans watch                print a line whenever the beans directory changes
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

import click

from beans.config import BeansConfig, init_config, load_config
from beans.errors import BeanError
from beans.models import KNOWN_LINK_TYPES, Bean, Link, format_timestamp
from beans.query import SORT_KEYS, BeanFilter, LinkFilter, query_beans, sort_beans
from beans.store import BeanStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _State:
    def __init__(self, config_root: str | None, beans_path: str | None) -> None:
        self.config_root = config_root
        self.beans_path = beans_path
        self._cfg: BeansConfig | None = None
        self._store: BeanStore | None = None

    @property
    def cfg(self) -> BeansConfig:
        if self._cfg is None:
            try:
                self._cfg = load_config(self.config_root)
            except BeanError as exc:
                raise click.ClickException(str(exc)) from exc
        return self._cfg

    @property
    def store(self) -> BeanStore:
        if self._store is None:
            root = Path(self.beans_path) if self.beans_path else self.cfg.beans_dir
            if not root.is_dir():
                msg = f"no beans directory at {root} (run `beans init` to create one)"
                raise click.ClickException(msg)
            store = BeanStore(root, self.cfg)
            try:
                store.load()
            except BeanError as exc:
                raise click.ClickException(str(exc)) from exc
            self._store = store
        return self._store


pass_state = click.make_pass_decorator(_State)


def _parse_links(values: tuple[str, ...]) -> list[Link]:
    links = []
    for value in values:
        try:
            link = Link.parse(value)
        except BeanError as exc:
            raise click.BadParameter(str(exc)) from exc
        if link.type not in KNOWN_LINK_TYPES:
            msg = f"unknown link type {link.type!r} (must be one of: {', '.join(KNOWN_LINK_TYPES)})"
            raise click.BadParameter(msg)
        links.append(link)
    return links


def _parse_link_filters(values: tuple[str, ...]) -> list[LinkFilter]:
    try:
        return [LinkFilter.parse(v) for v in values]
    except BeanError as exc:
        raise click.BadParameter(str(exc)) from exc


def _color(name: str) -> str:
    """Config colors are free-form; only pass rich the ones it understands."""
    from rich.color import Color, ColorParseError

    try:
        Color.parse(name)
    except ColorParseError:
        return ""
    return name


def _status_markup(cfg: BeansConfig, status: str) -> str:
    from rich.markup import escape

    conf = cfg.get_status(status)
    color = _color(conf.color) if conf else "red"
    return f"[{color}]{escape(status)}[/{color}]" if color else escape(status)


def _priority_markup(cfg: BeansConfig, priority: str) -> str:
    from rich.markup import escape

    conf = cfg.get_priority(priority)
    color = _color(conf.color) if conf else ""
    return f"[{color}]{escape(priority)}[/{color}]" if color else escape(priority)


def _print_table(beans: list[Bean], cfg: BeansConfig) -> None:
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    console = Console()
    if not beans:
        console.print("[dim]No beans found. Create one with: beans create <title>[/dim]")
        return

    table = Table(show_header=True, header_style="dim", box=None)
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("STATUS", no_wrap=True)
    table.add_column("TYPE", no_wrap=True)
    table.add_column("PRIORITY", no_wrap=True)
    table.add_column("TITLE")
    show_tags = any(b.tags for b in beans)
    if show_tags:
        table.add_column("TAGS", style="dim")

    for b in beans:
        type_conf = cfg.get_type(b.type)
        type_color = _color(type_conf.color) if type_conf else ""
        row = [
            escape(b.id),
            _status_markup(cfg, b.status),
            f"[{type_color}]{escape(b.type)}[/{type_color}]" if type_color else escape(b.type),
            _priority_markup(cfg, b.priority),
            escape(b.title),
        ]
        if show_tags:
            row.append(escape(", ".join(b.tags)))
        table.add_row(*row)
    console.print(table)


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="beans")
@click.option("--config", "config_root", default=None, help="Directory holding .beans.toml (default: search upward)")
@click.option("--beans-path", default=None, help="Beans directory (overrides config)")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, config_root: str | None, beans_path: str | None, verbose: bool) -> None:
    """beans: a file-based issue tracker."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(message)s",
    )
    ctx.obj = _State(config_root, beans_path)


# ---------------------------------------------------------------------------
# beans init
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--prefix", default=None, help="ID prefix for new beans")
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
def init(prefix: str | None, root: str) -> None:
    """Create .beans.toml and the beans directory in the current project."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, prefix=prefix)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo(".beans.toml already exists, skipping")

    try:
        cfg = load_config(root_path)
        BeanStore(cfg.beans_dir, cfg).init()
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Beans dir : {cfg.beans_dir}")


# ---------------------------------------------------------------------------
# beans create
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("title")
@click.option("-s", "--status", default=None, help="Initial status (default: from config)")
@click.option("-t", "--type", "bean_type", default=None, help="Bean type (default: from config)")
@click.option("-p", "--priority", default=None, help="Priority (default: from config)")
@click.option("-d", "--body", default="", help="Body text ('-' reads stdin)")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--link", "links", multiple=True, help="Link as type:id (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print the created bean as JSON")
@pass_state
def create(
    state: _State,
    title: str,
    status: str | None,
    bean_type: str | None,
    priority: str | None,
    body: str,
    tags: tuple[str, ...],
    links: tuple[str, ...],
    as_json: bool,
) -> None:
    """Create a bean and print its ID."""
    if body == "-":
        body = click.get_text_stream("stdin").read()
    parsed = _parse_links(links)
    store = state.store
    for link in parsed:
        if not store.exists(link.target):
            click.echo(f"warning: target bean {link.target!r} does not exist", err=True)
    try:
        bean = store.create(
            title, status=status, type=bean_type, priority=priority, body=body, tags=tags, links=parsed,
        )
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        _echo_json(bean.to_dict())
    else:
        click.echo(bean.id)


# ---------------------------------------------------------------------------
# beans list
# ---------------------------------------------------------------------------


@cli.command("list")
@click.option("-s", "--status", multiple=True, help="Only these statuses (repeatable)")
@click.option("--no-status", multiple=True, help="Exclude these statuses (repeatable)")
@click.option("-t", "--type", "types", multiple=True, help="Only these types (repeatable)")
@click.option("--no-type", multiple=True, help="Exclude these types (repeatable)")
@click.option("-p", "--priority", multiple=True, help="Only these priorities (repeatable)")
@click.option("--no-priority", multiple=True, help="Exclude these priorities (repeatable)")
@click.option("--has-link", multiple=True, help="Has an outgoing link: type or type:id")
@click.option("--linked-as", multiple=True, help="Is the target of a link: type or type:source-id")
@click.option("--no-link", multiple=True, help="Exclude beans with this outgoing link")
@click.option("--no-linked-as", multiple=True, help="Exclude beans targeted by this link")
@click.option("--tag", multiple=True, help="Has any of these tags (repeatable)")
@click.option("--no-tag", multiple=True, help="Exclude beans with any of these tags")
@click.option("-S", "--search", default=None, help="Full-text search over slug, title and body")
@click.option("--sort", type=click.Choice(SORT_KEYS), default=None,
              help="Sort key (default: open work first, then by type)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--full", is_flag=True, help="Include bodies in JSON output")
@click.option("-q", "--quiet", is_flag=True, help="Only print IDs")
@pass_state
def list_cmd(
    state: _State,
    status: tuple[str, ...],
    no_status: tuple[str, ...],
    types: tuple[str, ...],
    no_type: tuple[str, ...],
    priority: tuple[str, ...],
    no_priority: tuple[str, ...],
    has_link: tuple[str, ...],
    linked_as: tuple[str, ...],
    no_link: tuple[str, ...],
    no_linked_as: tuple[str, ...],
    tag: tuple[str, ...],
    no_tag: tuple[str, ...],
    search: str | None,
    sort: str | None,
    as_json: bool,
    full: bool,
    quiet: bool,
) -> None:
    """List beans."""
    if as_json and quiet:
        raise click.UsageError("--json and --quiet are mutually exclusive")

    store = state.store
    criteria = BeanFilter(
        status=list(status),
        exclude_status=list(no_status),
        type=list(types),
        exclude_type=list(no_type),
        priority=list(priority),
        exclude_priority=list(no_priority),
        has_link=_parse_link_filters(has_link),
        linked_as=_parse_link_filters(linked_as),
        no_link=_parse_link_filters(no_link),
        no_linked_as=_parse_link_filters(no_linked_as),
        tags=list(tag),
        exclude_tags=list(no_tag),
        sort=sort,
    )
    beans = query_beans(store.find_all(), criteria, state.cfg)
    if search:
        hits = {b.id for b in store.search(search)}
        beans = [b for b in beans if b.id in hits]

    if as_json:
        _echo_json([b.to_dict(include_body=full) for b in beans])
    elif quiet:
        for b in beans:
            click.echo(b.id)
    else:
        _print_table(beans, state.cfg)


# ---------------------------------------------------------------------------
# beans show
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("bean_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@pass_state
def show(state: _State, bean_id: str, as_json: bool) -> None:
    """Show a bean with its links and backlinks."""
    store = state.store
    try:
        bean = store.find_by_id(bean_id)
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc

    incoming = store.find_incoming_links(bean.id)
    if as_json:
        data = bean.to_dict()
        data["incoming_links"] = [{link.link_type: link.source.id} for link in incoming]
        _echo_json(data)
        return

    from rich.console import Console
    from rich.markup import escape

    console = Console()
    console.print(f"[bold]{escape(bean.id)}[/bold]  {escape(bean.title)}")
    console.print(
        f"status: {_status_markup(state.cfg, bean.status)}   type: {escape(bean.type or '-')}"
        f"   priority: {_priority_markup(state.cfg, bean.priority or '-')}",
    )
    if bean.tags:
        console.print(f"tags: {escape(', '.join(bean.tags))}")
    console.print(f"[dim]created {format_timestamp(bean.created_at)}  updated {format_timestamp(bean.updated_at)}[/dim]")
    console.print(f"[dim]{escape(str(store.full_path(bean)))}[/dim]")
    if bean.links:
        console.print("\nLinks:")
        for link in bean.links:
            target = store.exists(link.target)
            missing = "" if target else "  [red](missing)[/red]"
            console.print(f"  {escape(link.type)} → {escape(link.target)}{missing}")
    if incoming:
        console.print("\nLinked from:")
        for link in sorted(incoming, key=lambda i: (i.link_type, i.source.id)):
            console.print(f"  {escape(link.source.id)} ({escape(link.link_type)})  {escape(link.source.title)}")
    if bean.body:
        console.print()
        click.echo(bean.body)


# ---------------------------------------------------------------------------
# beans update
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("bean_id")
@click.option("-s", "--status", default=None)
@click.option("-t", "--type", "bean_type", default=None)
@click.option("-p", "--priority", default=None, help="New priority (empty to reset to the default)")
@click.option("--title", default=None)
@click.option("-d", "--body", default=None, help="Replace body ('-' reads stdin)")
@click.option("--add-tag", multiple=True)
@click.option("--remove-tag", multiple=True)
@click.option("--link", "links", multiple=True, help="Add link type:id")
@click.option("--unlink", multiple=True, help="Remove link type:id")
@pass_state
def update(
    state: _State,
    bean_id: str,
    status: str | None,
    bean_type: str | None,
    priority: str | None,
    title: str | None,
    body: str | None,
    add_tag: tuple[str, ...],
    remove_tag: tuple[str, ...],
    links: tuple[str, ...],
    unlink: tuple[str, ...],
) -> None:
    """Update a bean's fields."""
    store = state.store
    try:
        bean = store.find_by_id(bean_id)
        if status is not None:
            bean.status = status
        if bean_type is not None:
            bean.type = bean_type
        if priority is not None:
            bean.priority = priority or state.cfg.default_priority
        if title is not None:
            bean.title = title
        if body is not None:
            bean.body = click.get_text_stream("stdin").read() if body == "-" else body
        for t in add_tag:
            bean.add_tag(t)
        for t in remove_tag:
            bean.remove_tag(t)
        for link in _parse_links(links):
            if link.target == bean.id:
                raise click.BadParameter("a bean cannot link to itself")
            if not store.exists(link.target):
                click.echo(f"warning: target bean {link.target!r} does not exist", err=True)
            bean.add_link(link.type, link.target)
        for link in _parse_links(unlink):
            bean.remove_link(link.type, link.target)
        store.save(bean)
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Updated {bean.id}")


# ---------------------------------------------------------------------------
# beans delete / archive
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("bean_id")
@click.option("-f", "--force", is_flag=True, help="Skip confirmation")
@pass_state
def delete(state: _State, bean_id: str, force: bool) -> None:
    """Delete a bean and remove links pointing at it."""
    store = state.store
    try:
        bean = store.find_by_id(bean_id)
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc

    incoming = store.find_incoming_links(bean.id)
    if not force:
        if incoming:
            click.echo(f"{len(incoming)} link(s) point at {bean.id} and will be removed.")
        click.confirm(f"Delete {bean.id} ({bean.title})?", abort=True)

    try:
        removed = store.remove_links_to(bean.id) if incoming else 0
        store.delete(bean.id)
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc
    suffix = f" (removed {removed} reference(s))" if removed else ""
    click.echo(f"Deleted {bean.id}{suffix}")


@cli.command()
@click.option("-f", "--force", is_flag=True, help="Skip confirmation")
@pass_state
def archive(state: _State, force: bool) -> None:
    """Delete all beans with an archive status."""
    store, cfg = state.store, state.cfg
    doomed = sort_beans(
        (b for b in store.find_all() if cfg.is_archive_status(b.status)), None, cfg
    )
    if not doomed:
        click.echo("No beans with an archive status.")
        return

    doomed_ids = {b.id for b in doomed}
    external = [
        link
        for b in doomed
        for link in store.find_incoming_links(b.id)
        if link.source.id not in doomed_ids
    ]

    if not force:
        click.echo(f"Beans to archive ({len(doomed)}):")
        for b in doomed:
            click.echo(f"  {b.id}  {b.status:<12} {b.title}")
        if external:
            click.echo(f"\nWarning: {len(external)} link(s) from other beans will be removed.")
        click.confirm(f"Archive {len(doomed)} bean(s)?", abort=True)

    try:
        removed = sum(store.remove_links_to(b.id) for b in doomed)
        for b in doomed:
            store.delete(b.id)
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc
    suffix = f", removed {removed} reference(s)" if removed else ""
    click.echo(f"Archived {len(doomed)} bean(s){suffix}")


# ---------------------------------------------------------------------------
# beans watch
# ---------------------------------------------------------------------------


@cli.command()
@pass_state
def watch(state: _State) -> None:
    """Print a line each time beans change on disk (Ctrl-C to stop)."""
    store = state.store

    def _changed() -> None:
        click.echo(f"{time.strftime('%H:%M:%S')} reloaded: {len(store)} beans")

    try:
        store.watch(_changed)
    except BeanError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Watching {store.root} ({len(store)} beans). Ctrl-C to stop.")
    try:
        while store.watching:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        store.close()
