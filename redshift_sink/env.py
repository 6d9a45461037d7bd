"""Environment substitution for sink options.

Credentials normally stay out of the YAML file:

    aws_sec_key: ${AWS_SECRET_ACCESS_KEY}
    redshift_password: $REDSHIFT_PASSWORD

``load_env_file`` pulls a ``.env`` file into the environment first
(python-dotenv). A reference to an unset variable is left as written and
the option it sits in is logged, since a literal ``${...}`` password or
bucket name only fails later, at connect or upload time.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

__all__ = ["expand_env_vars", "expand_options", "load_env_file", "unset_references"]

_REFERENCE = re.compile(r"\$\{(?P<braced>[^}]+)\}|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(path: Optional[Union[str, Path]] = None) -> bool:
    """Load ``path`` (or the nearest ``.env``); True when a file was read.

    Variables already set in the process environment win.
    """
    return load_dotenv(dotenv_path=path, override=False)


def _name(match: "re.Match[str]") -> str:
    return match.group("braced") or match.group("bare")


def unset_references(value: str) -> List[str]:
    """Names referenced in ``value`` that are not set in the environment."""
    return [_name(m) for m in _REFERENCE.finditer(value) if _name(m) not in os.environ]


def expand_env_vars(value: str) -> str:
    """Substitute ``${NAME}`` and ``$NAME`` references in ``value``."""
    return _REFERENCE.sub(lambda m: os.environ.get(_name(m), m.group(0)), value)


def _expand(value: Any, option: str) -> Any:
    if isinstance(value, str):
        missing = unset_references(value)
        if missing:
            logger.warning(
                "option %s references unset environment variable(s): %s",
                option,
                ", ".join(missing),
            )
        return expand_env_vars(value)
    if isinstance(value, dict):
        return {
            key: _expand(item, f"{option}.{key}" if option else str(key))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_expand(item, f"{option}[{i}]") for i, item in enumerate(value)]
    return value


def expand_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``options`` with every string value expanded, at any depth."""
    return _expand(options, "")
