from datetime import datetime
from pathlib import Path
import json
import logging

logger = logging.getLogger(__name__)


class CartStorage:
    """JSON files holding the local cart and, separately, the selection."""

    def __init__(self, path, selection_path=None):
        self.path = Path(path)
        if selection_path is None:
            selection_path = self.path.with_name(
                f'{self.path.stem}.selection.json')
        self.selection_path = Path(selection_path)

    def _read(self, path):
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {path}: {e}")
            return None

    def _write(self, path, data):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(data, ensure_ascii=False), encoding='utf-8')
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")

    def load_items(self):
        data = self._read(self.path)
        if isinstance(data, dict) and isinstance(data.get('items'), list):
            return data['items']
        return []

    def save_items(self, items):
        self._write(self.path, {
            'items': items,
            'updated_at': datetime.utcnow().isoformat(),
        })

    def load_selection(self):
        data = self._read(self.selection_path)
        if isinstance(data, list):
            return set(data)
        return set()

    def save_selection(self, selected_ids):
        self._write(self.selection_path, sorted(selected_ids))

    def clear(self):
        for path in (self.path, self.selection_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
