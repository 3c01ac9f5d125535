"""User-facing guidance for rejection and error codes."""
import yaml
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel


class RejectionGuidance(BaseModel):
    code: str
    user_actionable: bool
    guidance: str


class RejectionGuide:
    """Guidance catalog backed by a YAML file, loaded on first lookup."""

    def __init__(self, catalog_file: Optional[str] = None):
        if catalog_file is None:
            catalog_file = Path(__file__).parent / "data" / "rejection_codes.yaml"
        self.catalog_file = Path(catalog_file)
        self._entries: Optional[Dict[str, dict]] = None
        self._default: dict = {
            "user_actionable": False,
            "guidance": "Something went wrong. Try again in a few minutes.",
        }

    def _load(self) -> Dict[str, dict]:
        if self._entries is None:
            self._entries = {}
            if self.catalog_file.exists():
                with open(self.catalog_file, "r") as f:
                    data = yaml.safe_load(f) or {}
                self._default = data.get("default", self._default)
                self._entries = data.get("codes", {})
        return self._entries

    def lookup(self, code: Optional[str]) -> RejectionGuidance:
        """Guidance for a code. Unknown codes get the non-actionable default."""
        entries = self._load()
        entry = entries.get(code or "", self._default)
        return RejectionGuidance(
            code=code or "UNKNOWN",
            user_actionable=bool(entry.get("user_actionable", False)),
            guidance=entry.get("guidance", self._default["guidance"]),
        )

    def known_codes(self):
        return sorted(self._load())


rejection_guide = RejectionGuide()
