"""SQLite persistence for package summaries and encoded declarations.

Three tables:

- ``pkg_info``: one summary row per import path, including the reverse
  import index (``$id|`` list of packages importing this one).
- ``pkg_decl``: encoded declaration columns keyed by ``(pid, tag)``.
- ``pkg_func``: exported function names for function search.
"""

import sqlite3
import time
from dataclasses import asdict, fields
from pathlib import Path

from loguru import logger

from gowalker.codec import EncodedPackage, decode, decode_legacy, encode
from gowalker.models import Package, PkgInfo

_INFO_COLUMNS = [f.name for f in fields(PkgInfo)]
_DECL_COLUMNS = EncodedPackage.column_names()


def is_standard_import(path: str) -> bool:
    return "." not in path.split("/", 1)[0]


def _pid_token(pid: int) -> str:
    return f"${pid}|"


def _count_pids(import_pid: str) -> int:
    return len(import_pid.split("|")) - 1


class PackageStore:
    """SQLite-backed package store."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 5000")

        self._create_tables()
        logger.debug(f"PackageStore initialized at {db_path}")

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS pkg_info (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                import_path TEXT NOT NULL UNIQUE,
                project_name TEXT NOT NULL DEFAULT '',
                vcs TEXT NOT NULL DEFAULT '',
                synopsis TEXT NOT NULL DEFAULT '',
                is_cmd INTEGER NOT NULL DEFAULT 0,
                etag TEXT NOT NULL DEFAULT '',
                created INTEGER NOT NULL DEFAULT 0,
                viewed INTEGER NOT NULL DEFAULT 0,
                views INTEGER NOT NULL DEFAULT 0,
                rank INTEGER NOT NULL DEFAULT 0,
                stars INTEGER NOT NULL DEFAULT 0,
                imported_num INTEGER NOT NULL DEFAULT 0,
                import_pid TEXT NOT NULL DEFAULT '',
                js_num INTEGER NOT NULL DEFAULT 0
            )
        """)
        decl_columns = ",\n".join(f"{c} TEXT NOT NULL DEFAULT ''" for c in _DECL_COLUMNS)
        self._conn.execute(f"""
            CREATE TABLE IF NOT EXISTS pkg_decl (
                pid INTEGER NOT NULL,
                tag TEXT NOT NULL DEFAULT '',
                codec TEXT NOT NULL DEFAULT 'json',
                {decl_columns},
                UNIQUE(pid, tag)
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS pkg_func (
                pid INTEGER NOT NULL,
                name TEXT NOT NULL,
                doc TEXT NOT NULL DEFAULT '',
                UNIQUE(pid, name)
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_pkg_info_rank
            ON pkg_info(rank DESC)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_pkg_func_name
            ON pkg_func(name)
        """)
        self._conn.commit()

    # -------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------

    @staticmethod
    def _row_to_info(row: sqlite3.Row) -> PkgInfo:
        data = {c: row[c] for c in _INFO_COLUMNS}
        data["is_cmd"] = bool(data["is_cmd"])
        return PkgInfo(**data)

    def get_pkg_info(self, import_path: str) -> PkgInfo | None:
        row = self._conn.execute(
            "SELECT * FROM pkg_info WHERE import_path = ?", (import_path,)
        ).fetchone()
        return self._row_to_info(row) if row else None

    def add_views(self, import_path: str) -> None:
        self._conn.execute(
            """UPDATE pkg_info
               SET views = views + 1, viewed = ?,
                   rank = imported_num * 30 + views + 1
               WHERE import_path = ?""",
            (int(time.time()), import_path),
        )
        self._conn.commit()

    def all_paths(self) -> set[str]:
        rows = self._conn.execute("SELECT import_path FROM pkg_info").fetchall()
        return {r["import_path"] for r in rows}

    def get_popular(self, limit: int = 25) -> list[PkgInfo]:
        rows = self._conn.execute(
            "SELECT * FROM pkg_info ORDER BY rank DESC, import_path LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._row_to_info(r) for r in rows]

    def search_funcs(self, name: str, limit: int = 50) -> list[tuple[str, str]]:
        """``(import_path, func_name)`` pairs whose name starts with ``name``."""
        rows = self._conn.execute(
            """SELECT i.import_path, f.name FROM pkg_func f
               JOIN pkg_info i ON i.id = f.pid
               WHERE f.name LIKE ? ESCAPE '\\'
               ORDER BY i.rank DESC, f.name LIMIT ?""",
            (name.replace("%", "\\%").replace("_", "\\_") + "%", limit),
        ).fetchall()
        return [(r["import_path"], r["name"]) for r in rows]

    # -------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------

    def save_project(self, pkg: Package) -> PkgInfo:
        """Write summary and declarations of ``pkg``; returns the new summary.

        Keeps the row id of an existing path, counts one more view and
        registers ``pkg`` in the reverse import index of the non-standard
        packages it imports.
        """
        now = int(time.time())
        old = self.get_pkg_info(pkg.import_path)
        if old is not None:
            pkg.id = old.id
            pkg.views = old.views + 1
            pkg.imported_num = old.imported_num
            pkg.import_pid = old.import_pid
        else:
            pkg.views = 1
        pkg.created = pkg.created or now
        pkg.viewed = now
        pkg.rank = pkg.imported_num * 30 + pkg.views

        info = asdict(pkg.info())
        columns = [c for c in _INFO_COLUMNS if c != "id"]
        assignments = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "import_path")
        with self._conn:
            self._conn.execute(
                f"""INSERT INTO pkg_info ({", ".join(columns)})
                    VALUES ({", ".join("?" for _ in columns)})
                    ON CONFLICT(import_path) DO UPDATE SET {assignments}""",
                [int(info[c]) if isinstance(info[c], bool) else info[c] for c in columns],
            )
            pkg.id = self._conn.execute(
                "SELECT id FROM pkg_info WHERE import_path = ?", (pkg.import_path,)
            ).fetchone()["id"]

            encoded = asdict(encode(pkg))
            self._conn.execute(
                f"""INSERT OR REPLACE INTO pkg_decl (pid, tag, codec, {", ".join(_DECL_COLUMNS)})
                    VALUES (?, ?, 'json', {", ".join("?" for _ in _DECL_COLUMNS)})""",
                [pkg.id, pkg.tag, *(encoded[c] for c in _DECL_COLUMNS)],
            )

            self._conn.execute("DELETE FROM pkg_func WHERE pid = ?", (pkg.id,))
            funcs = [*pkg.funcs, *(f for t in pkg.types for f in t.funcs)]
            self._conn.executemany(
                "INSERT OR REPLACE INTO pkg_func (pid, name, doc) VALUES (?, ?, ?)",
                [(pkg.id, f.name, f.doc) for f in funcs],
            )

            if not is_standard_import(pkg.import_path):
                for path in pkg.imports:
                    if not is_standard_import(path) and path != pkg.import_path:
                        self._update_import_info(path, pkg.id, add=True)

        logger.debug(f"Saved project {pkg.import_path} (id={pkg.id}, tag={pkg.tag!r})")
        return pkg.info()

    def _update_import_info(self, import_path: str, pid: int, add: bool) -> None:
        row = self._conn.execute(
            "SELECT import_pid, views FROM pkg_info WHERE import_path = ?",
            (import_path,),
        ).fetchone()
        if row is None:
            return
        import_pid = row["import_pid"]
        token = _pid_token(pid)
        if add and token not in import_pid:
            import_pid += token
        elif not add and token in import_pid:
            import_pid = import_pid.replace(token, "", 1)
        else:
            return
        num = _count_pids(import_pid)
        self._conn.execute(
            """UPDATE pkg_info SET import_pid = ?, imported_num = ?, rank = ?
               WHERE import_path = ?""",
            (import_pid, num, num * 30 + row["views"], import_path),
        )

    def load_project(self, pid: int, tag: str = "") -> Package | None:
        row = self._conn.execute(
            "SELECT * FROM pkg_decl WHERE pid = ? AND tag = ?", (pid, tag)
        ).fetchone()
        if row is None:
            return None
        columns = EncodedPackage(**{c: row[c] for c in _DECL_COLUMNS})
        if row["codec"] == "legacy":
            return decode_legacy(columns)
        return decode(columns)

    def save_legacy_decl(self, pid: int, tag: str, columns: EncodedPackage) -> None:
        """Store a row in the old delimiter format (imports from old dumps)."""
        encoded = asdict(columns)
        with self._conn:
            self._conn.execute(
                f"""INSERT OR REPLACE INTO pkg_decl (pid, tag, codec, {", ".join(_DECL_COLUMNS)})
                    VALUES (?, ?, 'legacy', {", ".join("?" for _ in _DECL_COLUMNS)})""",
                [pid, tag, *(encoded[c] for c in _DECL_COLUMNS)],
            )

    def delete_project(self, import_path: str) -> bool:
        """Remove every record of ``import_path``; True if anything existed."""
        info = self.get_pkg_info(import_path)
        if info is None:
            return False
        with self._conn:
            rows = self._conn.execute(
                "SELECT * FROM pkg_decl WHERE pid = ?", (info.id,)
            ).fetchall()
            if not is_standard_import(import_path):
                imports: set[str] = set()
                for row in rows:
                    columns = EncodedPackage(**{c: row[c] for c in _DECL_COLUMNS})
                    pkg = decode_legacy(columns) if row["codec"] == "legacy" else decode(columns)
                    imports.update(pkg.imports)
                for path in imports:
                    if not is_standard_import(path):
                        self._update_import_info(path, info.id, add=False)
            self._conn.execute("DELETE FROM pkg_decl WHERE pid = ?", (info.id,))
            self._conn.execute("DELETE FROM pkg_func WHERE pid = ?", (info.id,))
            self._conn.execute("DELETE FROM pkg_info WHERE id = ?", (info.id,))
        logger.info(f"Deleted project {import_path}")
        return True

    def close(self) -> None:
        self._conn.close()
