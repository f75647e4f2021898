import json
from typing import List, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine


def make_engine(database_url: str) -> Engine:
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set")
    kwargs = {"future": True}
    if database_url.startswith("sqlite"):
        # store calls run on worker threads; writers wait on the file lock
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(database_url, **kwargs)


def encode_list(values: Optional[List[str]]) -> str:
    return json.dumps(list(values or []))


def decode_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    try:
        out = json.loads(value)
    except (TypeError, ValueError):
        return []
    return out if isinstance(out, list) else []
