from __future__ import annotations

import argparse
import json
import sys
import tomllib
import warnings
from importlib import metadata
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.table import Table

from .book_io import export_book_document, import_book_document, parse_book_document
from .bindings import BindingScope, parse_scope
from .config import Suite, load_config
from .entries import Position
from .errors import PartialMigrationWarning, ValidationError, WorldbookError
from .library import create_book, delete_book, describe_books
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .patches import EntryPatch, ToggleFlag
from .sorting import score
from .web import create_app


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("wbsuite")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"

_TEXT_FIELDS = frozenset({"comment", "content"})

_POSITION_LABELS = {
    Position.BEFORE_CHARACTER_DEFINITION: "before char",
    Position.AFTER_CHARACTER_DEFINITION: "after char",
    Position.BEFORE_AUTHOR_NOTE: "before AN",
    Position.AFTER_AUTHOR_NOTE: "after AN",
    Position.AT_DEPTH: "@depth",
    Position.BEFORE_EXAMPLE_MESSAGES: "before EM",
    Position.AFTER_EXAMPLE_MESSAGES: "after EM",
}


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"wbsuite {__version__}",
    )


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--root",
        help="Directory holding the worldbook .json files (default: $WBSUITE_ROOT or cwd).",
    )
    parser.add_argument(
        "--character",
        help="Active character key for primary/additional bindings (default: $WBSUITE_CHARACTER).",
    )
    parser.add_argument(
        "--chat",
        help="Active chat id for the chat binding (default: $WBSUITE_CHAT).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log wbsuite internals to stderr.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Edit worldbooks, manage their bindings and stitch entries between books. "
        "Use `wbsuite web` for the HTTP API.",
    )
    _add_version_flag(ap)
    _add_common_options(ap)
    subparsers = ap.add_subparsers(dest="command")

    subparsers.add_parser("books", help="List books with entry counts and bindings.")

    show = subparsers.add_parser("show", help="Show a book's entries in prompt order.")
    show.add_argument("book")
    show.add_argument("-s", "--search", default="", help="Only show entries matching this text.")

    create = subparsers.add_parser("create", help="Create an empty book.")
    create.add_argument("book")

    delete = subparsers.add_parser("delete", help="Delete a book.")
    delete.add_argument("book")
    delete.add_argument(
        "--clear-bindings",
        action="store_true",
        help="Also remove the book from every binding scope.",
    )

    rename = subparsers.add_parser("rename", help="Rename a book and repoint its bindings.")
    rename.add_argument("book")
    rename.add_argument("new_name")

    export = subparsers.add_parser("export", help="Write a book as JSON.")
    export.add_argument("book")
    export.add_argument("-o", "--output", help="Output file (default: stdout).")

    import_ = subparsers.add_parser("import", help="Import a JSON worldbook file.")
    import_.add_argument("path")
    import_.add_argument("--name", help="Book name (default: the file's stem).")
    import_.add_argument("--overwrite", action="store_true", help="Replace an existing book.")

    add = subparsers.add_parser("add", help="Add a new entry at the top of a book.")
    add.add_argument("book")
    add.add_argument("--comment", default="")
    add.add_argument("--content", default="")
    add.add_argument("--key", action="append", default=[], help="Trigger keyword (repeatable).")

    remove = subparsers.add_parser("remove", help="Delete entries by uid.")
    remove.add_argument("book")
    remove.add_argument("uids", nargs="+", type=int)

    set_ = subparsers.add_parser("set", help="Assign fields on one or more entries.")
    set_.add_argument("book")
    set_.add_argument("--uid", dest="uids", action="append", type=int, required=True)
    set_.add_argument(
        "assignments",
        nargs="+",
        metavar="FIELD=VALUE",
        help="VALUE is parsed as JSON when possible, e.g. order=100 disable=true.",
    )

    toggle = subparsers.add_parser("toggle", help="Flip disable or constant on one entry.")
    toggle.add_argument("book")
    toggle.add_argument("uid", type=int)
    toggle.add_argument("flag", choices=["disable", "constant"])

    subparsers.add_parser("bindings", help="Show the current bindings in every scope.")

    bind = subparsers.add_parser("bind", help="Bind or unbind a book in one scope.")
    bind.add_argument("scope", choices=[scope.value for scope in BindingScope])
    bind.add_argument("book")
    bind.add_argument("--off", action="store_true", help="Unbind instead of binding.")

    stitch = subparsers.add_parser("stitch", help="Copy or move entries between two books.")
    stitch.add_argument("source")
    stitch.add_argument("target")
    stitch.add_argument("--uid", dest="uids", action="append", type=int, required=True)
    stitch.add_argument("--move", action="store_true", help="Remove the entries from the source.")

    snapshot = subparsers.add_parser("snapshot", help="Save or restore which entries are enabled.")
    snapshot_sub = snapshot.add_subparsers(dest="snapshot_cmd")
    snap_list = snapshot_sub.add_parser("list", help="List a book's snapshots.")
    snap_list.add_argument("book")
    for name, help_text in (
        ("save", "Record the currently enabled entries."),
        ("apply", "Enable exactly the entries recorded in a snapshot."),
        ("delete", "Forget a snapshot."),
    ):
        sub = snapshot_sub.add_parser(name, help=help_text)
        sub.add_argument("book")
        sub.add_argument("name")

    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Serve the worldbook HTTP API.")
    _add_version_flag(ap)
    _add_common_options(ap)
    ap.add_argument("--host", default="127.0.0.1", help="Bind host (default: %(default)s).")
    ap.add_argument("--port", type=int, default=2946, help="Bind port (default: %(default)s).")
    ap.add_argument(
        "--watch",
        action="store_true",
        help="Reload stitch panels when book files change on disk.",
    )
    return ap


def _parse_assignment(raw: str) -> tuple[str, object]:
    name, sep, value = raw.partition("=")
    if not sep or not name:
        raise ValidationError(f"Expected FIELD=VALUE, got {raw!r}.")
    name = name.strip()
    if name in _TEXT_FIELDS:
        return name, value
    try:
        parsed: object = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    return name, parsed


def _flags(disable: bool, constant: bool) -> str:
    marks = []
    if disable:
        marks.append("off")
    if constant:
        marks.append("const")
    return ",".join(marks)


def _run_books(suite: Suite, console: Console) -> int:
    listings = describe_books(suite.storage)
    if not listings:
        console.print("No books found.")
        return 0
    bindings = suite.bindings.get_bindings()
    table = Table(title=f"Books in {suite.config.root}")
    table.add_column("Book")
    table.add_column("Entries", justify="right")
    table.add_column("Enabled", justify="right")
    table.add_column("Bound")
    for listing in listings:
        table.add_row(
            listing.name,
            str(listing.entry_count),
            str(listing.enabled_count),
            ", ".join(scope.value for scope in bindings.scopes_for(listing.name)),
        )
    console.print(table)
    return 0


def _run_show(suite: Suite, args: argparse.Namespace, console: Console) -> int:
    suite.store.load(args.book)
    suite.store.set_search(args.search)
    note_depth = suite.author_note_depth()
    visible = {entry.uid for entry in suite.store.visible()}
    table = Table(title=args.book)
    table.add_column("UID", justify="right")
    table.add_column("Position")
    table.add_column("Score", justify="right")
    table.add_column("Order", justify="right")
    table.add_column("Flags")
    table.add_column("Tokens", justify="right")
    table.add_column("Comment")
    for entry in suite.store.presentation_order(note_depth):
        if entry.uid not in visible:
            continue
        try:
            position = _POSITION_LABELS[Position(entry.position)]
        except ValueError:
            position = f"? ({entry.position})"
        table.add_row(
            str(entry.uid),
            position,
            f"{score(entry, note_depth):g}",
            f"{entry.order:g}",
            _flags(entry.disable, entry.constant),
            str(suite.tokens.count(entry.content)),
            entry.comment,
        )
    console.print(table)
    return 0


def _run_rename(suite: Suite, args: argparse.Namespace, console: Console) -> int:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", PartialMigrationWarning)
        result = suite.bindings.rename_book(args.book, args.new_name)
    console.print(f"Renamed {result.old_name} -> {result.new_name}")
    if result.warning is not None:
        console.print(f"[yellow]Warning:[/yellow] {result.warning}")
        return 1
    return 0


def _run_export(suite: Suite, args: argparse.Namespace) -> int:
    document = export_book_document(suite.storage, args.book)
    text = json.dumps(document, ensure_ascii=False, indent=2)
    if args.output:
        Path(args.output).expanduser().write_text(text + "\n", encoding="utf-8")
    else:
        sys.stdout.write(text + "\n")
    return 0


def _run_import(suite: Suite, args: argparse.Namespace, console: Console) -> int:
    path = Path(args.path).expanduser()
    if not path.exists():
        raise SystemExit(f"File not found: {path}")
    name = args.name or path.stem
    document = parse_book_document(path.read_text(encoding="utf-8"))
    entries = import_book_document(suite.storage, name, document, overwrite=args.overwrite)
    console.print(f"Imported {len(entries)} entries into {name}")
    return 0


def _run_set(suite: Suite, args: argparse.Namespace, console: Console) -> int:
    patch = EntryPatch(dict(_parse_assignment(raw) for raw in args.assignments))
    suite.store.load(args.book)
    if len(args.uids) == 1:
        if not suite.store.mutate(args.uids[0], patch):
            raise SystemExit(f"Entry {args.uids[0]} not found in {args.book}.")
        suite.store.flush()
        changed = 1
    else:
        changed = suite.store.batch_mutate(args.uids, patch)
    console.print(f"Updated {changed} entries in {args.book}")
    return 0


def _run_toggle(suite: Suite, args: argparse.Namespace, console: Console) -> int:
    suite.store.load(args.book)
    if not suite.store.mutate(args.uid, ToggleFlag(args.flag)):
        raise SystemExit(f"Entry {args.uid} not found in {args.book}.")
    suite.store.flush()
    entry = suite.store.get(args.uid)
    assert entry is not None
    console.print(f"{args.book}#{args.uid} {args.flag}={getattr(entry, args.flag)}")
    return 0


def _run_bindings(suite: Suite, console: Console) -> int:
    snapshot = suite.bindings.get_bindings()
    table = Table(title="Bindings")
    table.add_column("Scope")
    table.add_column("Books")
    table.add_row("primary", snapshot.primary or "-")
    table.add_row("additional", ", ".join(snapshot.additional) or "-")
    table.add_row("global", ", ".join(snapshot.global_books) or "-")
    table.add_row("chat", snapshot.chat or "-")
    console.print(table)
    return 0


def _run_stitch(suite: Suite, args: argparse.Namespace, console: Console) -> int:
    stitch = suite.stitch
    stitch.bind("left", args.source)
    stitch.bind("right", args.target)
    for uid in dict.fromkeys(args.uids):
        stitch.toggle_select("left", uid)
    result = stitch.transfer("left", "right", move=args.move)
    verb = "Moved" if result.move else "Copied"
    for old_uid, new_uid in result.uid_map.items():
        console.print(f"{verb} {result.from_book}#{old_uid} -> {result.to_book}#{new_uid}")
    for side, error in result.errors.items():
        book = result.from_book if side == "left" else result.to_book
        console.print(f"[red]Failed to save {book}:[/red] {error}")
    return 0 if result.ok else 1


def _run_snapshot(suite: Suite, args: argparse.Namespace, console: Console) -> int:
    if not args.snapshot_cmd:
        raise SystemExit("A snapshot subcommand is required. Use --help for options.")
    if args.snapshot_cmd == "list":
        names = suite.snapshots.names(args.book)
        if not names:
            console.print(f"No snapshots for {args.book}.")
        for name in names:
            console.print(name)
        return 0
    if args.snapshot_cmd == "delete":
        suite.snapshots.delete(args.book, args.name)
        console.print(f"Deleted snapshot {args.name}")
        return 0
    suite.store.load(args.book)
    if args.snapshot_cmd == "save":
        enabled = suite.snapshots.save(suite.store, args.name)
        console.print(f"Saved snapshot {args.name} ({len(enabled)} enabled)")
        return 0
    if args.snapshot_cmd == "apply":
        suite.snapshots.apply(suite.store, args.name)
        console.print(f"Applied snapshot {args.name} to {args.book}")
        return 0
    raise SystemExit(f"Unknown snapshot subcommand: {args.snapshot_cmd}")


def _dispatch(suite: Suite, args: argparse.Namespace) -> int:
    console = Console()
    command = args.command
    if command == "books":
        return _run_books(suite, console)
    if command == "show":
        return _run_show(suite, args, console)
    if command == "create":
        console.print(f"Created {create_book(suite.storage, args.book)}")
        return 0
    if command == "delete":
        delete_book(
            suite.storage,
            args.book,
            store=suite.store,
            bindings=suite.bindings,
            clear_bindings=args.clear_bindings,
        )
        console.print(f"Deleted {args.book}")
        return 0
    if command == "rename":
        return _run_rename(suite, args, console)
    if command == "export":
        return _run_export(suite, args)
    if command == "import":
        return _run_import(suite, args, console)
    if command == "add":
        suite.store.load(args.book)
        created = suite.store.create(
            [EntryPatch.of(comment=args.comment, content=args.content, key=args.key)]
        )
        console.print(f"Added {args.book}#{created[0].uid}")
        return 0
    if command == "remove":
        suite.store.load(args.book)
        removed = suite.store.delete(args.uids)
        console.print(f"Removed {removed} entries from {args.book}")
        return 0
    if command == "set":
        return _run_set(suite, args, console)
    if command == "toggle":
        return _run_toggle(suite, args, console)
    if command == "bindings":
        return _run_bindings(suite, console)
    if command == "bind":
        suite.bindings.set_binding(parse_scope(args.scope), args.book, not args.off)
        return _run_bindings(suite, console)
    if command == "stitch":
        return _run_stitch(suite, args, console)
    if command == "snapshot":
        return _run_snapshot(suite, args, console)
    raise SystemExit(f"Unknown command: {command}")


def _run_web(args: argparse.Namespace) -> None:
    config = load_config(args.root, character=args.character, chat=args.chat)
    try:
        app = create_app(config, watch=args.watch)
    except FileNotFoundError as exc:
        raise SystemExit(str(exc)) from exc
    print(f"Serving wbsuite from {config.root}")
    print(f"API URL: http://{args.host}:{args.port}/api/books")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(app, host=args.host, port=args.port, log_config=build_uvicorn_log_config())


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "web":
        web_args = build_web_parser().parse_args(argv[1:])
        set_debug_logging(web_args.debug)
        _run_web(web_args)
        return 0

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    set_debug_logging(args.debug)
    if not args.command:
        parser.print_help()
        return 0

    config = load_config(args.root, character=args.character, chat=args.chat)
    if not config.root.is_dir():
        raise SystemExit(f"Worldbook root not found: {config.root}")
    suite = config.build()
    try:
        return _dispatch(suite, args)
    except WorldbookError as exc:
        raise SystemExit(str(exc)) from exc
    finally:
        try:
            suite.close()
        except WorldbookError as exc:
            print(f"Failed to save pending edits: {exc}", file=sys.stderr)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
