import sqlite3
import threading
from typing import Optional, Dict, List, Tuple

class StorageDB:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for pool, positions and collaborators (JSON)
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Snapshots table: append-only history per metric.
            # Values exceed 64 bits, so they are stored as decimal text.
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS snapshots (
                    metric TEXT,
                    ts INTEGER,
                    value TEXT,
                    PRIMARY KEY (metric, ts)
                )
            ''')
            self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()

    # --- State Methods ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def set_state(self, key: str, value: str):
        with self._lock:
            self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
            self.conn.commit()

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        with self._lock:
            self.cursor.execute('SELECT key, value FROM state WHERE key LIKE ?', (f"{prefix}%",))
            return {row[0]: row[1] for row in self.cursor.fetchall()}

    def clear_state(self):
        with self._lock:
            self.cursor.execute('DELETE FROM state')
            self.cursor.execute('DELETE FROM snapshots')
            self.conn.commit()

    # --- Snapshot Methods ---
    def append_snapshots(self, metric: str, entries: List[Tuple[int, int]]):
        """Appends (ts, value) entries. Rewriting an existing entry is an error."""
        with self._lock:
            self.cursor.executemany(
                'INSERT INTO snapshots (metric, ts, value) VALUES (?, ?, ?)',
                [(metric, ts, str(value)) for ts, value in entries]
            )
            self.conn.commit()

    def get_snapshots(self, metric: str) -> List[Tuple[int, int]]:
        with self._lock:
            self.cursor.execute('SELECT ts, value FROM snapshots WHERE metric = ? ORDER BY ts', (metric,))
            return [(row[0], int(row[1])) for row in self.cursor.fetchall()]

