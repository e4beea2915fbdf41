from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional

import typer

from .config import settings
from .db.session import SessionLocal
from .errors import CatalogError
from .services.auth import OwnerTokenService
from .services.document_store import DocumentDraft, DocumentKind, DocumentStore
from .services.export import ExportPipeline
from .services.importer import document_name_from_filename, parse_workbook, validate_upload
from .services.local_store import LocalAdapter
from .services.remote_store import RemoteAdapter

app = typer.Typer(help="QR Catalog administrative CLI")

BackendOption = typer.Option("local", "--backend", "-b", help="Document store backend: local or remote")
OwnerOption = typer.Option(None, "--owner", "-o", help="Owner UUID (required for the remote backend, LOCAL_OWNER_ID by default for local)")


def _store(backend: str, owner: Optional[str]) -> DocumentStore:
    if backend == "remote":
        return RemoteAdapter(SessionLocal, owner)
    if backend == "local":
        # the local store is single-user; it files documents under a fixed owner
        return LocalAdapter(owner_id=owner or settings.local_owner_id)
    raise typer.BadParameter(f"Unknown backend: {backend}")


def _fail(exc: CatalogError) -> None:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


@app.command("import-sheet")
def import_sheet(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Excel workbook to import"),
    name: str = typer.Option("", "--name", "-n", help="Document name (defaults to the file name)"),
    backend: str = BackendOption,
    owner: Optional[str] = OwnerOption,
) -> None:
    """Import the first sheet of a workbook as a new document."""
    content = path.read_bytes()
    try:
        validate_upload(path.name, len(content))
        records = parse_workbook(content, path.name)
        document_id = _store(backend, owner).create(
            DocumentDraft(name=document_name_from_filename(path.name, name), records=records, kind=DocumentKind.IMPORTED)
        )
    except CatalogError as exc:
        _fail(exc)
        return
    typer.echo(f"Imported {len(records)} records as document {document_id}")


@app.command("list")
def list_documents(backend: str = BackendOption, owner: Optional[str] = OwnerOption) -> None:
    """List documents, most recently updated first."""
    try:
        documents = _store(backend, owner).list_documents()
    except CatalogError as exc:
        _fail(exc)
        return
    for document in documents:
        typer.echo(
            f"{document.id}  {document.name}  [{document.kind.value}]  "
            f"records={len(document.records)} versions={len(document.versions)} "
            f"updated={document.updated_at.isoformat()}"
        )


@app.command()
def show(document_id: str, backend: str = BackendOption, owner: Optional[str] = OwnerOption) -> None:
    """Print a document's current records."""
    try:
        document = _store(backend, owner).get(document_id)
    except CatalogError as exc:
        _fail(exc)
        return
    typer.echo(f"{document.name} ({document.id})")
    for record in document.records:
        fields = ", ".join(f"{key}={value}" for key, value in record.fields)
        typer.echo(f"  {record.id}: {fields}")


@app.command()
def versions(document_id: str, backend: str = BackendOption, owner: Optional[str] = OwnerOption) -> None:
    """List a document's version snapshots, newest first."""
    try:
        snapshots = _store(backend, owner).list_versions(document_id)
    except CatalogError as exc:
        _fail(exc)
        return
    if not snapshots:
        typer.echo("No versions yet")
    for snapshot in snapshots:
        typer.echo(
            f"v{snapshot.sequence_number}  {snapshot.timestamp.isoformat()}  "
            f"records={len(snapshot.captured_records)}  {snapshot.change_note}"
        )


@app.command()
def delete(
    document_id: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    backend: str = BackendOption,
    owner: Optional[str] = OwnerOption,
) -> None:
    """Delete a document and its whole history."""
    if not yes:
        typer.confirm(f"Delete document {document_id} and all of its versions?", abort=True)
    try:
        _store(backend, owner).delete(document_id)
    except CatalogError as exc:
        _fail(exc)
        return
    typer.echo(f"Deleted {document_id}")


@app.command("export-pdf")
def export_pdf(
    document_id: str,
    out: Path = typer.Option(Path("qr-codes.pdf"), "--out", help="Output PDF path"),
    codes_per_page: int = typer.Option(settings.default_codes_per_page, "--codes-per-page", "-p", min=1, max=25),
    backend: str = BackendOption,
    owner: Optional[str] = OwnerOption,
) -> None:
    """Export one QR code per record as a printable PDF sheet."""
    try:
        document = _store(backend, owner).get(document_id)
        result = ExportPipeline().export_pdf_sync(document, codes_per_page)
    except CatalogError as exc:
        _fail(exc)
        return
    out.write_bytes(result.content)
    typer.echo(f"Wrote {result.exported_count} codes on {result.page_count} page(s) to {out}")
    for failure in result.failures:
        typer.echo(f"Skipped record {failure.record_id}: {failure.reason}", err=True)


@app.command("export-xlsx")
def export_xlsx(
    document_id: str,
    out: Path = typer.Option(Path("products-with-qr.xlsx"), "--out", help="Output workbook path"),
    backend: str = BackendOption,
    owner: Optional[str] = OwnerOption,
) -> None:
    """Export the records with a QR Code URL column."""
    try:
        content = ExportPipeline().export_workbook(_store(backend, owner).get(document_id))
    except CatalogError as exc:
        _fail(exc)
        return
    out.write_bytes(content)
    typer.echo(f"Wrote {out}")


@app.command("issue-token")
def issue_token(owner: Optional[str] = typer.Argument(None, help="Owner id; a new one is generated when omitted")) -> None:
    """Print an API token for an owner."""
    owner_id = owner or str(uuid.uuid4())
    try:
        token = OwnerTokenService().issue(owner_id)
    except ValueError as exc:
        raise typer.BadParameter(f"Owner id must be a UUID: {owner_id}") from exc
    typer.echo(f"owner_id={owner_id}")
    typer.echo(f"token={token}")


if __name__ == "__main__":
    app()
