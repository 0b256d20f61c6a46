from functools import lru_cache
from pathlib import Path

import yaml

_DATA_DIR = Path(__file__).resolve().parents[1] / "data"


@lru_cache(maxsize=8)
def load_data_table(name: str) -> dict:
    """Load ``app/data/<name>.yaml``. Missing or non-mapping files yield {}."""
    path = _DATA_DIR / f"{name}.yaml"
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}
