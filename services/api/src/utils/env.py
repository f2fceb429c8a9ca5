import os
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from . import log

logger = log.get_logger(__name__)


class EnvVarSpec(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    default: Optional[str] = None
    parse: Callable[[str], Any] = lambda x: x
    is_optional: bool = False
    is_secret: bool = False
    type: Tuple[Any, Any] = (str, ...)


def raw(spec: EnvVarSpec) -> Optional[str]:
    value = os.environ.get(spec.id)
    if value is None or value == "":
        return spec.default
    return value


def parse(spec: EnvVarSpec) -> Any:
    value = raw(spec)
    if value is None:
        return None
    return spec.parse(value)


def validate(specs: List[EnvVarSpec]) -> bool:
    """Check every spec parses to its declared type. Logs each failure."""
    ok = True
    for spec in specs:
        value = raw(spec)
        if value is None:
            if not spec.is_optional:
                logger.error(f"Missing required environment variable {spec.id}")
                ok = False
            continue

        shown = "***" if spec.is_secret else value
        try:
            parsed = spec.parse(value)
        except Exception as e:
            logger.error(f"Could not parse {spec.id}={shown}: {e}")
            ok = False
            continue

        model = create_model(spec.id, value=spec.type)
        try:
            model(value=parsed)
        except ValidationError as e:
            logger.error(f"Invalid value for {spec.id}={shown}: {e.errors()[0]['msg']}")
            ok = False
    return ok
