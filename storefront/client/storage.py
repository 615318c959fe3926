# storefront/client/storage.py
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from storefront.client.models import PersistedCart
from storefront.utils.settings import CART_STORAGE_PATH
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class JsonFileCartStorage:
    """Lokalny zapis koszyka: {items, discounts, gift_cards, cart_id}."""

    def __init__(self, path: str | os.PathLike | None = None):
        self.path = Path(path or CART_STORAGE_PATH)

    def load(self) -> Optional[PersistedCart]:
        if not self.path.exists():
            return None

        try:
            return PersistedCart.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as e:
            # uszkodzony plik nie moze zablokowac sklepu, zaczynamy od pustego koszyka
            logger.warning(f"Ignoring unreadable cart storage {self.path}: {e}")
            return None

    def save(self, state: PersistedCart):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(state.model_dump_json(), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self):
        if self.path.exists():
            self.path.unlink()
