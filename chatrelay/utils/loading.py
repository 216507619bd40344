"""
Dotted-path object loading.

Used to plug externally supplied collaborators (session-protocol client
factory, reply resolver) in from configuration.
"""
from __future__ import annotations

import importlib
import logging
from typing import Any

from chatrelay.errors import ConfigError

logger = logging.getLogger(__name__)


def load_object(path: str) -> Any:
    """
    Import and return an object given "package.module:attribute".

    A plain "package.module.attribute" form is accepted too.

    Raises:
        ConfigError: If the module or attribute cannot be found
    """
    if ":" in path:
        module_name, _, attr = path.partition(":")
    else:
        module_name, _, attr = path.rpartition(".")

    if not module_name or not attr:
        raise ConfigError(f"Invalid object path: {path!r} (expected 'module:attribute')")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import {module_name!r}: {e}") from e

    obj = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigError(f"{module_name!r} has no attribute {attr!r}") from e

    logger.debug(f"Loaded {path}")
    return obj
