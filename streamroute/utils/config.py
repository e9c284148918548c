"""Read and write TOML config files using Pydantic models."""
from __future__ import annotations

import sys
from typing import BinaryIO
from typing import TypeVar

import tomli_w
from pydantic import BaseModel

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    import tomllib
else:  # pragma: <3.11 cover
    import tomli as tomllib

BaseModelT = TypeVar('BaseModelT', bound=BaseModel)


def dump(
    model: BaseModel,
    fp: BinaryIO,
    *,
    exclude_none: bool = True,
) -> None:
    """Serialize a config model as TOML to a binary file-like object.

    Args:
        model: Config model instance to write.
        fp: File-like bytes stream to write to.
        exclude_none: Skip writing none attributes. TOML has no null type
            so this should only be disabled for models without optional
            fields.
    """
    tomli_w.dump(model.model_dump(exclude_none=exclude_none), fp)


def dumps(model: BaseModel, *, exclude_none: bool = True) -> str:
    """Serialize a config model to a TOML string."""
    return tomli_w.dumps(model.model_dump(exclude_none=exclude_none))


def load(model: type[BaseModelT], fp: BinaryIO) -> BaseModelT:
    """Parse TOML from a binary file into a config model.

    Args:
        model: Config model type to validate the TOML data with.
        fp: File-like bytes stream to read in.

    Returns:
        Model initialized from the TOML file.
    """
    return loads(model, fp.read().decode())


def loads(model: type[BaseModelT], data: str) -> BaseModelT:
    """Parse a TOML string into a config model.

    Raises:
        pydantic.ValidationError: If the data does not validate against
            `model`.
    """
    return model.model_validate(tomllib.loads(data))
