#!/usr/bin/env python3
"""Wallet database inspection tool for debugging and recovery.

Usage:
    uv run python tools/wallet_inspect.py ./wallet.dat --summary
    uv run python tools/wallet_inspect.py ./wallet.dat --page 3
    uv run python tools/wallet_inspect.py ./wallet.dat --tree
    uv run python tools/wallet_inspect.py ./wallet.dat --tags --mode best-effort
    cat wallet.dat | uv run python tools/wallet_inspect.py - --scan
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from exceptions import FormatError
from models.config import ReaderConfig, SalvageMode, Traversal
from models.storage import PageHeader
from storage.btree import BTreeWalker
from storage.pager import Pager
from storage.pages import InternalPage, LeafPage, describe_page
from walletdb import WalletDB

SAMPLE_COUNT = 10


def print_meta(db: WalletDB) -> None:
    """Print meta page information."""
    profile = db.profile
    meta = profile.meta
    print("=== Meta Page (Page 0) ===")
    print(f"  Magic: 0x{meta.magic:08x}")
    print(f"  Byte Order: {profile.endianness.byteorder}")
    print(f"  Version: {meta.version} (BDB {profile.bdb_release or 'unknown'})")
    print(f"  Header Layout: {profile.header_layout.value}")
    print(f"  Page Size: {profile.page_size} bytes")
    print(f"  Last Page: {meta.last_pgno}")
    print(f"  Root Page: {meta.root}")
    print(f"  Free List: {meta.free}")
    if meta.encrypted:
        print(f"  Encryption: alg={meta.encrypt_alg} crypto_magic=0x{meta.crypto_magic:08x}")
    print()


def print_diagnostics(db: WalletDB) -> None:
    if not db.diagnostics:
        return
    print(f"=== Diagnostics ({len(db.diagnostics)}) ===")
    for diagnostic in db.diagnostics:
        print(f"  {diagnostic}")
    print()


def print_summary(db: WalletDB) -> None:
    """Print database summary."""
    print("=" * 50)
    print("WALLET SUMMARY")
    print("=" * 50)
    print()

    print_meta(db)

    records = db.as_map()
    print("=== Records ===")
    print(f"  Total Records: {len(records)}")
    print(f"  Image Size: {db.source.size} bytes")
    for i, entry in enumerate(records.entries()):
        if i == SAMPLE_COUNT:
            print(f"    ... and {len(records) - SAMPLE_COUNT} more records")
            break
        where = f"page {entry.provenance.page_no} slot {entry.provenance.slot_index}" if entry.provenance else "?"
        print(f"    [{i}] key={_key_repr(entry.key)} ({len(entry.key)}B) value={len(entry.value)}B @ {where}")
    print()

    print_diagnostics(db)


def print_page(db: WalletDB, page_no: int) -> None:
    """Print details of a specific page."""
    if page_no == 0:
        print_meta(db)
        return

    pager = Pager(db.source, db.profile.page_size)
    page = describe_page(pager.read_page(page_no), page_no, db.profile)
    header = page if isinstance(page, PageHeader) else page.header

    print(f"=== Page {page_no} ===")
    print(f"  Type: {header.page_type.name} (code 0x{header.type_code:02x})")
    print(f"  Prev/Next: {header.prev}/{header.next}")
    print(f"  Lower/Upper: {header.lower}/{header.upper}")
    print(f"  Level: {header.level}")

    match page:
        case LeafPage():
            print(f"  Slot Count: {header.slot_count}")
            for entry in page.entries[:SAMPLE_COUNT]:
                mark = " (deleted)" if entry.deleted else ""
                data = entry.field.try_borrow()
                if data is None:
                    body = f"overflow page={entry.field.first_page} len={entry.field.total_len}"
                else:
                    body = f"inline {_key_repr(bytes(data))}"
                print(f"    [{entry.slot_index}] @{entry.offset} {body}{mark}")
            if len(page.entries) > SAMPLE_COUNT:
                print(f"    ... and {len(page.entries) - SAMPLE_COUNT} more entries")

        case InternalPage():
            print(f"  Children: {page.children}")
            for entry in page.entries[:SAMPLE_COUNT]:
                key = entry.key.try_borrow()
                key_repr = _key_repr(bytes(key)) if key is not None else f"overflow page={entry.key.first_page}"
                print(f"    [{entry.slot_index}] child={entry.child_page} separator={key_repr}")

        case _:
            pass

    for diagnostic in getattr(page, "skipped", []):
        print(f"  Skipped: {diagnostic}")
    print()


def print_tree(db: WalletDB) -> None:
    """Print Btree structure."""
    print("=== Btree Structure ===")
    pager = Pager(db.source, db.profile.page_size)
    walker = BTreeWalker(pager, db.profile)

    print(f"  Root Page: {db.profile.btree_root}")
    print(f"  Tree Height: {walker.tree_height()}")
    print()
    print("  Tree Layout:")
    _print_tree_node(pager, db, db.profile.btree_root, depth=0)
    print()


def _print_tree_node(pager: Pager, db: WalletDB, page_no: int, depth: int) -> None:
    """Recursively print tree node information."""
    indent = "    " + "  " * depth
    try:
        page = describe_page(pager.read_page(page_no), page_no, db.profile)
    except FormatError as e:
        print(f"{indent}[Page {page_no}] UNREADABLE ({e})")
        return

    match page:
        case LeafPage():
            live = [entry for entry in page.entries if not entry.deleted]
            print(f"{indent}[Leaf {page_no}] {len(live) // 2} records, {len(page.entries) - len(live)} deleted")
        case InternalPage():
            print(f"{indent}[Internal {page_no}] {len(page.children)} children")
            # Limit depth to avoid huge output
            if depth < 2:
                for child in page.children:
                    _print_tree_node(pager, db, child, depth + 1)
            else:
                print(f"{indent}  ({len(page.children)} children not expanded)")
        case _:
            print(f"{indent}[Page {page_no}] {page.page_type.name}")


def print_tags(db: WalletDB) -> None:
    """Print a histogram of wallet record types."""
    print("=== Record Types ===")
    counts = db.tag_counts()
    for tag, count in counts.most_common():
        print(f"  {tag:<20} {count}")
    untagged = len(db.as_map()) - sum(counts.values())
    if untagged:
        print(f"  {'(untagged)':<20} {untagged}")
    print()
    print_diagnostics(db)


def _key_repr(key: bytes, max_len: int = 20) -> str:
    """Format a key for display."""
    try:
        text = key.decode("utf-8")
    except UnicodeDecodeError:
        text = None

    if text is not None and text.isprintable():
        if len(text) > max_len:
            return repr(text[:max_len] + "...")
        return repr(text)

    hex_str = key[:max_len].hex()
    if len(key) > max_len:
        return f"0x{hex_str}..."
    return f"0x{hex_str}"


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect Berkeley DB wallet files")
    parser.add_argument("db", help="Path to wallet file, or - for stdin")
    parser.add_argument("--summary", action="store_true", help="Show wallet summary")
    parser.add_argument("--page", type=int, help="Show specific page")
    parser.add_argument("--tree", action="store_true", help="Show Btree structure")
    parser.add_argument("--tags", action="store_true", help="Show record type counts")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in SalvageMode],
        default=SalvageMode.CONSERVATIVE.value,
        help="Fault handling below the meta page",
    )
    parser.add_argument("--scan", action="store_true", help="Read every leaf page in page order")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = ReaderConfig(
        mode=SalvageMode(args.mode),
        traversal=Traversal.SCAN if args.scan else Traversal.TREE,
    )

    try:
        with WalletDB.open(args.db, config) as db:
            if args.summary:
                print_summary(db)
            elif args.page is not None:
                print_page(db, args.page)
            elif args.tree:
                print_tree(db)
            elif args.tags:
                print_tags(db)
            else:
                print_summary(db)
    except (FileNotFoundError, FormatError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
