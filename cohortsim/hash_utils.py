from __future__ import annotations
import json, hashlib
from typing import Any, Dict

import pandas as pd

def stable_json_sha256(obj: Dict[str, Any]) -> str:
    data = json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(data).hexdigest()

def table_sha256(df: pd.DataFrame) -> str:
    # Row order and float bits both matter: identical digests mean identical tables.
    h = hashlib.sha256()
    h.update(",".join(map(str, df.columns)).encode("utf-8"))
    h.update(pd.util.hash_pandas_object(df, index=False).to_numpy().tobytes())
    return h.hexdigest()
