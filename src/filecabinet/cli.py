"""Command line interface for filecabinet."""

from __future__ import annotations

import getpass
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import click
from rich.console import Console
from rich.table import Table

from filecabinet import __version__
from filecabinet.container.store import read_container
from filecabinet.crypto.kdf import resolve_argon_params
from filecabinet.entry import IndexRecord
from filecabinet.errors import (
    AlreadyExists,
    AuthFailure,
    BatchCancelled,
    CorruptContainer,
    IoFailure,
    NotFoundError,
    ValidationError,
)
from filecabinet.importer import DEFAULT_EXTENSIONS, import_directory
from filecabinet.naming import build_document_name
from filecabinet.vault import RECORD_ORDERS, VaultHandle, create, unlock

EXIT_SUCCESS = 0
EXIT_USAGE = 1
EXIT_AUTH = 2
EXIT_FS = 3
EXIT_CORRUPT = 4

MIN_ID_PREFIX = 4
PASSWORD_ENVVAR = "FILECABINET_PASSWORD"

console = Console()


def _prompt_password(password_opt: str | None) -> str:
    if password_opt is not None:
        return password_opt
    return getpass.getpass("Passphrase: ")


def _human_size(num: float) -> str:
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if num < 1024 or unit == "TB":
            return f"{num:.1f} {unit}" if unit != "B" else f"{int(num)} {unit}"
        num /= 1024
    return f"{num:.1f} TB"


def _format_ns(stamp_ns: int) -> str:
    return datetime.fromtimestamp(stamp_ns / 1e9, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _handle_action(action: Callable[[], None]) -> int:
    try:
        action()
    except AuthFailure:
        console.print("[red]Invalid passphrase or tampered vault[/red]")
        return EXIT_AUTH
    except CorruptContainer as exc:
        console.print(f"[red]Error: vault is corrupted or not supported:[/red] {exc}")
        return EXIT_CORRUPT
    except (ValidationError, BatchCancelled) as exc:
        console.print(f"[red]Invalid input:[/red] {exc}")
        return EXIT_USAGE
    except AlreadyExists as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_FS
    except NotFoundError as exc:
        console.print(f"[red]Not found:[/red] {exc}")
        return EXIT_FS
    except FileExistsError as exc:
        console.print(f"[red]Refusing to overwrite {exc.filename}. Use --overwrite to replace.[/red]")
        return EXIT_FS
    except (IoFailure, OSError) as exc:
        console.print(f"[red]Filesystem error:[/red] {exc}")
        return EXIT_FS
    return EXIT_SUCCESS


def _resolve_id(handle: VaultHandle, text: str) -> str:
    """Accept a full entry id or an unambiguous prefix of one."""
    if text in handle.index:
        return text
    if len(text) >= MIN_ID_PREFIX:
        matches = [record.entry_id for record in handle.index if record.entry_id.startswith(text)]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise ValidationError(f"Entry id prefix {text!r} is ambiguous")
    raise NotFoundError(f"No entry with id {text}")


def _records_table(records: list[IndexRecord]) -> Table:
    table = Table()
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Tags")
    table.add_column("Size", justify="right")
    table.add_column("Modified (UTC)")
    for record in records:
        table.add_row(
            record.entry_id[:12],
            record.name,
            ", ".join(record.tags),
            _human_size(record.size),
            _format_ns(record.modified_ns),
        )
    return table


password_option = click.option(
    "--password",
    "password_opt",
    envvar=PASSWORD_ENVVAR,
    help=f"Vault passphrase (read from ${PASSWORD_ENVVAR} or prompted if omitted).",
)
vault_argument = click.argument("vault", type=click.Path(path_type=Path))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="filecabinet")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug).")
def cli(verbose: int) -> None:
    """A password-protected cabinet of encrypted documents."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )


@cli.command(help="Create a new, empty vault.", epilog="Example:\n  filecabinet init docs.cab")
@vault_argument
@password_option
@click.option("--argon-mem-kib", type=int, default=None, help="Argon2 memory cost in KiB.")
@click.option("--argon-time", type=int, default=None, help="Argon2 time cost (iterations).")
@click.option("--argon-parallelism", type=int, default=None, help="Argon2 parallelism.")
@click.pass_context
def init(
    ctx: click.Context,
    vault: Path,
    password_opt: str | None,
    argon_mem_kib: int | None,
    argon_time: int | None,
    argon_parallelism: int | None,
) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        params = resolve_argon_params(
            mem_kib=argon_mem_kib, time_cost=argon_time, parallelism=argon_parallelism
        )
        create(vault, password, params=params).lock()
        console.print(f"[green]Created vault[/green] {vault}.")

    ctx.exit(_handle_action(_run))


@cli.command(help="Add a file to the vault.", epilog="Example:\n  filecabinet add docs.cab scan.pdf --tag bank")
@vault_argument
@click.argument("source", type=click.Path(path_type=Path, dir_okay=False))
@password_option
@click.option("--name", "name_opt", default=None, help="Entry name (defaults to the file name).")
@click.option("--tag", "tags", multiple=True, help="Tag to attach (repeatable).")
@click.option("--date", "doc_date", default=None, help="Document date; builds a normalized name.")
@click.option("--institution", default=None, help="Issuing institution for a normalized name.")
@click.option("--title", default=None, help="Document title for a normalized name.")
@click.option("--page", default="1", show_default=True, help="Page number for a normalized name.")
@click.pass_context
def add(
    ctx: click.Context,
    vault: Path,
    source: Path,
    password_opt: str | None,
    name_opt: str | None,
    tags: tuple[str, ...],
    doc_date: str | None,
    institution: str | None,
    title: str | None,
    page: str,
) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        name = name_opt or source.name
        if doc_date or institution or title:
            name = build_document_name(
                doc_date or "", institution or "", title or "", page, source.suffix or ".bin"
            )
        payload = source.read_bytes()
        with unlock(vault, password) as handle:
            entry_id = handle.add(name, tags, payload)
        console.print(f"[green]Added[/green] {name} as {entry_id}.")

    ctx.exit(_handle_action(_run))


@cli.command(
    name="import",
    help="Add all scanned documents in a directory in one commit.",
    epilog="Example:\n  filecabinet import docs.cab ./scans --ext pdf --ext png",
)
@vault_argument
@click.argument("directory", type=click.Path(path_type=Path, file_okay=False))
@password_option
@click.option(
    "--ext",
    "extensions",
    multiple=True,
    default=DEFAULT_EXTENSIONS,
    show_default=True,
    help="File extension to import (repeatable).",
)
@click.pass_context
def import_(
    ctx: click.Context,
    vault: Path,
    directory: Path,
    password_opt: str | None,
    extensions: tuple[str, ...],
) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        with unlock(vault, password) as handle:
            ids = import_directory(handle, directory, extensions=extensions)
        console.print(f"[green]Imported {len(ids)} document(s)[/green] from {directory}.")

    ctx.exit(_handle_action(_run))


@cli.command(name="ls", help="List vault entries.")
@vault_argument
@password_option
@click.option(
    "--sort",
    "order",
    type=click.Choice(RECORD_ORDERS),
    default="name",
    show_default=True,
    help="Listing order.",
)
@click.pass_context
def list_entries(ctx: click.Context, vault: Path, password_opt: str | None, order: str) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        with unlock(vault, password) as handle:
            records = handle.records(order)
        if not records:
            console.print("[yellow]Vault is empty.[/yellow]")
            return
        console.print(_records_table(records))

    ctx.exit(_handle_action(_run))


@cli.command(
    help="Find entries by name pattern and/or tags.",
    epilog="Examples:\n  filecabinet search docs.cab '*.pdf'\n  filecabinet search docs.cab '^2020' --regex --tag bank",
)
@vault_argument
@click.argument("pattern", required=False)
@password_option
@click.option("--regex", is_flag=True, default=False, help="Treat PATTERN as a regular expression.")
@click.option("--tag", "tags", multiple=True, help="Required tag (repeatable).")
@click.option("--any", "match_any", is_flag=True, default=False, help="Match any of the tags instead of all.")
@click.pass_context
def search(
    ctx: click.Context,
    vault: Path,
    pattern: str | None,
    password_opt: str | None,
    regex: bool,
    tags: tuple[str, ...],
    match_any: bool,
) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        with unlock(vault, password) as handle:
            refs = handle.search(pattern, regex=regex, tags=tags, match_any=match_any)
            records = [handle.record(ref.entry_id) for ref in refs]
        if not records:
            console.print("[yellow]No matching entries.[/yellow]")
            return
        console.print(_records_table(records))

    ctx.exit(_handle_action(_run))


@cli.command(help="Decrypt one entry to a file.")
@vault_argument
@click.argument("entry_id")
@click.argument("output_path", required=False, type=click.Path(path_type=Path, dir_okay=False))
@password_option
@click.option("--overwrite/--no-overwrite", default=False, help="Overwrite the output file if it exists.")
@click.pass_context
def export(
    ctx: click.Context,
    vault: Path,
    entry_id: str,
    output_path: Path | None,
    password_opt: str | None,
    overwrite: bool,
) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        with unlock(vault, password) as handle:
            resolved = _resolve_id(handle, entry_id)
            target = output_path or Path(handle.record(resolved).name)
            payload = handle.export(resolved)
        with target.open("wb" if overwrite else "xb") as out:
            out.write(payload)
        console.print(f"[green]Exported to[/green] {target} ({_human_size(len(payload))}).")

    ctx.exit(_handle_action(_run))


@cli.command(name="rm", help="Remove an entry.")
@vault_argument
@click.argument("entry_id")
@password_option
@click.pass_context
def remove(ctx: click.Context, vault: Path, entry_id: str, password_opt: str | None) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        with unlock(vault, password) as handle:
            resolved = _resolve_id(handle, entry_id)
            name = handle.record(resolved).name
            handle.remove(resolved)
        console.print(f"[green]Removed[/green] {name}.")

    ctx.exit(_handle_action(_run))


@cli.command(help="Rename an entry. Its id does not change.")
@vault_argument
@click.argument("entry_id")
@click.argument("new_name")
@password_option
@click.pass_context
def rename(ctx: click.Context, vault: Path, entry_id: str, new_name: str, password_opt: str | None) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        with unlock(vault, password) as handle:
            record = handle.rename(_resolve_id(handle, entry_id), new_name)
        console.print(f"[green]Renamed[/green] {record.entry_id} to {record.name}.")

    ctx.exit(_handle_action(_run))


@cli.command(name="tag", help="Replace an entry's tags (no TAGS clears them).")
@vault_argument
@click.argument("entry_id")
@click.argument("tags", nargs=-1)
@password_option
@click.pass_context
def retag(
    ctx: click.Context, vault: Path, entry_id: str, tags: tuple[str, ...], password_opt: str | None
) -> None:
    password = _prompt_password(password_opt)

    def _run() -> None:
        with unlock(vault, password) as handle:
            record = handle.retag(_resolve_id(handle, entry_id), tags)
        console.print(f"[green]Tags for {record.name}:[/green] {', '.join(record.tags) or '(none)'}")

    ctx.exit(_handle_action(_run))


@cli.command(
    help="Validate vault structure, and every entry when a passphrase is given.",
    epilog="Examples:\n  filecabinet check docs.cab\n  filecabinet check docs.cab --password pw",
)
@vault_argument
@click.option("--password", "password_opt", envvar=PASSWORD_ENVVAR, help="Passphrase for full verification.")
@click.pass_context
def check(ctx: click.Context, vault: Path, password_opt: str | None) -> None:
    def _run() -> None:
        image = read_container(vault)
        params = image.kdf_params
        table = Table(show_header=False, box=None)
        table.add_row("Format version", str(image.version))
        table.add_row("Entries", str(len(image.entries)))
        table.add_row(
            "Argon2id",
            f"mem={params.mem_cost_kib} KiB, time={params.time_cost}, p={params.parallelism}",
        )
        console.print("[bold]Vault check[/bold]")
        console.print(table)

        if password_opt is None:
            console.print("[yellow]Entry authentication skipped (no passphrase supplied).[/yellow]")
            return
        with unlock(vault, password_opt) as handle:
            verified = handle.verify()
        console.print(f"[green]Integrity verified for {verified} entries.[/green]")

    ctx.exit(_handle_action(_run))


def main(argv: list[str] | None = None) -> int:
    try:
        return cli.main(args=argv, prog_name="filecabinet", standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        return EXIT_USAGE
    except SystemExit as exc:  # noqa: TRY003
        return exc.code if isinstance(exc.code, int) else EXIT_USAGE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
