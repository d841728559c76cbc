"""
Stela Indexer CLI

Command-line interface for indexer administration.

Commands:
- cursor / reset-cursor: Inspect or override the last indexed block
- agreements / inscriptions: List derived state
- events: Event history of one agreement or inscription
- overdue: Agreements the liquidation bot would pick up now
- set-terms: Store structural fields (duration, deadline) by hand
- sync-terms: Read missing structural fields from the contract
- sync-once: Run a single indexing pass against the configured node
- init-db: Create indexer tables (development; use alembic in production)
"""

import asyncio
import time
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from stela_indexer.contracts.types import AgreementStatus, InscriptionStatus, SubjectType
from stela_indexer.contracts.u256 import hex_to_u256, u256_to_hex

app = typer.Typer(
    name="stela-cli",
    help="Stela Indexer CLI",
)

console = Console()


def get_db():
    """Get database session."""
    from stela_base.db import get_db as _get_db
    return next(_get_db())


def parse_id(raw: str) -> str:
    """Accept an id as hex or decimal and return its canonical form."""
    try:
        return u256_to_hex(hex_to_u256(raw))
    except ValueError:
        rprint(f"[red]Invalid id: {raw}[/red]")
        raise typer.Exit(1)


@app.command()
def cursor():
    """Show the last fully indexed block."""
    db = get_db()

    try:
        from stela_indexer.persistence.cursor import CursorStore

        block = CursorStore(db).get()
        if block is None:
            rprint("[yellow]No cursor yet (indexing starts at the configured start block)[/yellow]")
        else:
            rprint(f"Last indexed block: [bold]{block}[/bold]")

    finally:
        db.close()


@app.command()
def reset_cursor(
    block: int = typer.Argument(..., help="Block number to set the cursor to"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """
    Override the cursor.

    Used to recover from an ordering violation: the next pass resumes at
    BLOCK + 1 and already recorded events replay as no-ops.
    """
    db = get_db()

    try:
        from stela_indexer.persistence.cursor import CursorStore

        store = CursorStore(db)
        current = store.get()

        if not force:
            confirm = typer.confirm(f"Move cursor from {current} to {block}?")
            if not confirm:
                rprint("[yellow]Cancelled[/yellow]")
                raise typer.Exit(0)

        try:
            store.reset(block)
        except ValueError as e:
            rprint(f"[red]{e}[/red]")
            raise typer.Exit(1)

        rprint(f"[green]Cursor set to {block}[/green]")

    finally:
        db.close()


@app.command()
def agreements(
    status: Optional[str] = typer.Option(None, help="Filter by status (partial, filled, cancelled, ...)"),
    lender: Optional[str] = typer.Option(None, help="Filter by lender address"),
    limit: int = typer.Option(20, help="Maximum number of agreements to show"),
):
    """List agreements."""
    if status:
        try:
            AgreementStatus(status)
        except ValueError:
            rprint(f"[red]Unknown status: {status}[/red]")
            raise typer.Exit(1)

    db = get_db()

    try:
        from stela_indexer.contracts.u256 import normalize_address
        from stela_indexer.persistence.repo import IndexerRepository

        rows = IndexerRepository(db).list_agreements(
            status=status,
            lender=normalize_address(lender) if lender else None,
            limit=limit,
        )

        if not rows:
            rprint("[yellow]No agreements found[/yellow]")
            raise typer.Exit(0)

        table = Table(title="Agreements")
        table.add_column("ID", style="dim")
        table.add_column("Status")
        table.add_column("Issued (bps)", justify="right")
        table.add_column("Lender")
        table.add_column("Signed At", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Last Block", justify="right")

        for row in rows:
            table.add_row(
                row.id,
                row.status,
                str(row.issued_debt_percentage),
                row.lender or "-",
                str(row.signed_at) if row.signed_at is not None else "-",
                str(row.duration) if row.duration is not None else "-",
                str(row.last_block) if row.last_block is not None else "-",
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def inscriptions(
    status: Optional[str] = typer.Option(None, help="Filter by repayment status (open, repaid, liquidated)"),
    redeemed: bool = typer.Option(False, "--redeemed", help="Only inscriptions whose shares were redeemed"),
    limit: int = typer.Option(20, help="Maximum number of inscriptions to show"),
):
    """List inscriptions."""
    if status:
        try:
            InscriptionStatus(status)
        except ValueError:
            rprint(f"[red]Unknown status: {status}[/red]")
            raise typer.Exit(1)

    db = get_db()

    try:
        from stela_indexer.persistence.repo import IndexerRepository

        rows = IndexerRepository(db).list_inscriptions(
            status=status,
            share_status=InscriptionStatus.REDEEMED.value if redeemed else None,
            limit=limit,
        )

        if not rows:
            rprint("[yellow]No inscriptions found[/yellow]")
            raise typer.Exit(0)

        table = Table(title="Inscriptions")
        table.add_column("ID", style="dim")
        table.add_column("Status")
        table.add_column("Shares")
        table.add_column("Updated At", justify="right")
        table.add_column("Last Block", justify="right")

        for row in rows:
            table.add_row(
                row.id,
                row.status,
                row.share_status,
                str(row.updated_at) if row.updated_at is not None else "-",
                str(row.last_block) if row.last_block is not None else "-",
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def events(
    subject_id: str = typer.Argument(..., help="Agreement or inscription id (hex or decimal)"),
    limit: int = typer.Option(50, help="Maximum number of events to show"),
):
    """Show the event history of an agreement or inscription."""
    canonical = parse_id(subject_id)
    db = get_db()

    try:
        from stela_indexer.persistence.repo import IndexerRepository

        rows = IndexerRepository(db).list_events(subject_id=canonical, limit=limit)

        if not rows:
            rprint(f"[yellow]No events for {canonical}[/yellow]")
            raise typer.Exit(0)

        table = Table(title=f"Events for {canonical[:10]}...")
        table.add_column("Block", justify="right")
        table.add_column("Log", justify="right")
        table.add_column("Type")
        table.add_column("Subject")
        table.add_column("Tx", style="dim")
        table.add_column("Payload")

        for row in rows:
            table.add_row(
                str(row.block_number),
                str(row.log_index),
                row.event_type,
                row.subject_type,
                row.tx_hash[:12] + "...",
                ", ".join(f"{k}={v}" for k, v in (row.payload or {}).items()) or "-",
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def overdue(
    now: Optional[int] = typer.Option(None, help="Unix time to evaluate at (default: current time)"),
    limit: int = typer.Option(50, help="Maximum number of agreements to show"),
):
    """List filled agreements whose term has elapsed."""
    at = now if now is not None else int(time.time())
    db = get_db()

    try:
        from stela_indexer.persistence.repo import LiquidationQueries

        rows = LiquidationQueries(db).find_liquidatable(at, limit=limit)

        if not rows:
            rprint(f"[green]No overdue agreements at {at}[/green]")
            raise typer.Exit(0)

        table = Table(title=f"Overdue agreements at {at}")
        table.add_column("ID", style="dim")
        table.add_column("Lender")
        table.add_column("Due At", justify="right")
        table.add_column("Overdue (s)", justify="right")

        for row in rows:
            due_at = row.signed_at + row.duration
            table.add_row(row.id, row.lender or "-", str(due_at), str(at - due_at))

        console.print(table)

    finally:
        db.close()


@app.command()
def set_terms(
    subject_id: str = typer.Argument(..., help="Agreement or inscription id (hex or decimal)"),
    duration: int = typer.Option(..., help="Loan duration in seconds"),
    deadline: Optional[int] = typer.Option(None, help="Deadline (unix seconds)"),
    inscription: bool = typer.Option(False, "--inscription", help="Id refers to an inscription"),
):
    """
    Store structural terms by hand (see sync-terms for the contract read).

    Statuses and ordering bookkeeping are never touched.
    """
    canonical = parse_id(subject_id)
    subject_type = SubjectType.INSCRIPTION if inscription else SubjectType.AGREEMENT
    db = get_db()

    try:
        from stela_indexer.persistence.repo import IndexerRepository

        try:
            IndexerRepository(db).record_terms(subject_type, canonical, duration=duration, deadline=deadline)
        except ValueError as e:
            db.rollback()
            rprint(f"[red]{e}[/red]")
            raise typer.Exit(1)

        db.commit()
        rprint(f"[green]Terms stored for {subject_type} {canonical}[/green]")

    finally:
        db.close()


@app.command()
def sync_once():
    """Run one indexing pass against the configured node."""
    from stela_base.settings import get_settings
    from stela_indexer.chain.rpc import StarknetRpcProvider
    from stela_indexer.errors import IndexerError
    from stela_indexer.fetcher import RetryPolicy
    from stela_indexer.pipeline import IndexerPipeline

    settings = get_settings()
    db = get_db()

    async def run():
        provider = StarknetRpcProvider(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
        try:
            pipeline = IndexerPipeline(
                db,
                provider,
                settings.stela_address,
                start_block=settings.start_block,
                max_block_range=settings.max_block_range,
                chunk_size=settings.events_chunk_size,
                retry=RetryPolicy(
                    max_attempts=settings.fetch_max_attempts,
                    backoff_base=settings.fetch_backoff_base_seconds,
                    backoff_max=settings.fetch_backoff_max_seconds,
                ),
            )
            return await pipeline.run_once()
        finally:
            await provider.close()

    try:
        report = asyncio.run(run())
    except IndexerError as e:
        rprint(f"[red]Pass failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    if report.idle:
        rprint(f"[green]Up to date (head {report.head})[/green]")
        return

    rprint(f"[green]Indexed blocks {report.from_block}-{report.to_block}[/green]")
    rprint(f"  Events: {report.events}")
    rprint(f"  Applied: {report.applied}")
    rprint(f"  Unchanged: {report.unchanged}")
    rprint(f"  Duplicates: {report.duplicates}")
    rprint(f"  Unrecognized: {report.unrecognized}")


@app.command()
def sync_terms(
    limit: int = typer.Option(50, help="Max rows per subject type"),
):
    """Read missing loan terms from the contract."""
    from stela_base.settings import get_settings
    from stela_indexer.chain.rpc import StarknetRpcProvider
    from stela_indexer.terms import TermsReader, TermsSync

    settings = get_settings()
    db = get_db()

    async def run():
        provider = StarknetRpcProvider(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
        try:
            reader = TermsReader(provider, settings.stela_address)
            return await TermsSync(db, reader, batch_size=limit).sync_missing()
        finally:
            await provider.close()

    try:
        report = asyncio.run(run())
    finally:
        db.close()

    rprint(f"[green]Terms recorded: {len(report.recorded)}[/green]")
    if report.absent:
        rprint(f"[yellow]Not on contract: {len(report.absent)}[/yellow]")
    if report.failed:
        rprint(f"[red]Failed: {len(report.failed)}[/red]")
        raise typer.Exit(1)


@app.command()
def init_db():
    """Create indexer tables if they do not exist."""
    from stela_base.db import get_engine
    from stela_indexer.persistence.models import IndexerBase

    IndexerBase.metadata.create_all(bind=get_engine())
    rprint("[green]Indexer tables created[/green]")


def main():
    app()


if __name__ == "__main__":
    main()
