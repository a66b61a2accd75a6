from __future__ import annotations

import sqlite3
import tempfile
import zipfile
from datetime import datetime
from pathlib import Path

from storefront.db.sqlite import Database


def make_backup(db: Database, backup_dir: str, export_dir: str) -> str:
    """
    Makes a ZIP: a consistent copy of the database + generated order PDFs.
    Returns the path to the zip.
    """
    backups = Path(backup_dir)
    backups.mkdir(parents=True, exist_ok=True)

    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    zip_path = backups / f"backup_{ts}.zip"

    with tempfile.TemporaryDirectory() as tmp:
        snapshot = Path(tmp) / "storefront.db"
        dst = sqlite3.connect(snapshot)
        try:
            with db.connection() as conn:
                conn.backup(dst)
        finally:
            dst.close()

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
            z.write(snapshot, arcname="db/storefront.db")

            exports = Path(export_dir)
            if exports.exists():
                for p in exports.glob("*.pdf"):
                    z.write(p, arcname=f"orders/{p.name}")

    return str(zip_path)
