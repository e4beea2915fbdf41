from __future__ import annotations

import re
import uuid

from typer.testing import CliRunner

from qrcatalog.cli import app
from qrcatalog.services.auth import OwnerTokenService

runner = CliRunner()


def test_import_list_export_and_delete(local_backend, tmp_path, product_sheet):
    sheet = tmp_path / "spring.xlsx"
    sheet.write_bytes(product_sheet)

    imported = runner.invoke(app, ["import-sheet", str(sheet)])
    assert imported.exit_code == 0, imported.output
    document_id = re.search(r"document (\S+)", imported.output).group(1)

    listed = runner.invoke(app, ["list"])
    assert document_id in listed.output
    assert "spring" in listed.output

    out = tmp_path / "codes.pdf"
    exported = runner.invoke(app, ["export-pdf", document_id, "--out", str(out), "-p", "4"])
    assert exported.exit_code == 0, exported.output
    assert out.read_bytes().startswith(b"%PDF")
    assert "1 page(s)" in exported.output

    deleted = runner.invoke(app, ["delete", document_id, "--yes"])
    assert deleted.exit_code == 0
    shown = runner.invoke(app, ["show", document_id])
    assert shown.exit_code == 1


def test_import_rejects_empty_sheet(local_backend, tmp_path, workbook_bytes):
    sheet = tmp_path / "empty.xlsx"
    sheet.write_bytes(workbook_bytes([["SKU"]]))

    result = runner.invoke(app, ["import-sheet", str(sheet)])

    assert result.exit_code == 1


def test_issue_token_prints_a_verifiable_token():
    owner = str(uuid.uuid4())

    result = runner.invoke(app, ["issue-token", owner])

    assert result.exit_code == 0
    token = re.search(r"token=(\S+)", result.output).group(1)
    assert OwnerTokenService().verify(token) == owner
