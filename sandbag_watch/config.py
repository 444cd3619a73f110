"""
Settings loaded from the environment (and a .env file, if present).

Zulip credentials may come from the environment or from a zuliprc file of
`key=value` lines (`email=`, `key=`, optionally `site=`).
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .lichess import LICHESS_ROOT
from .scoring import DEFAULT_THRESHOLDS, ScoreThresholds

DEFAULT_ZULIPRC = "zuliprc.txt"
DEFAULT_SLEEP_SECONDS = 600


class ConfigError(ValueError):
    """Missing or invalid configuration."""


def read_zuliprc(path: str | Path) -> dict[str, str]:
    """
    Parse a zuliprc file into a dict.

    Lines without `=` (such as an `[api]` section header) are ignored.
    """
    values = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            key, sep, value = line.strip().partition("=")
            if sep:
                values[key.strip()] = value.strip()
    return values


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_thresholds(path: Optional[str | Path]) -> ScoreThresholds:
    """Score thresholds from a JSON file, or the built-in table."""
    if not path:
        return DEFAULT_THRESHOLDS
    try:
        with open(path, encoding="utf-8") as f:
            return ScoreThresholds.from_dict(json.load(f))
    except (OSError, KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid thresholds file {path}: {e}") from e


@dataclass(frozen=True)
class Settings:
    """Process configuration, immutable once loaded."""
    zulip_email: str
    zulip_key: str
    zulip_site: str
    zulip_channel: str = "mod"
    zulip_topic: str = "sandbagging"
    lichess_token: Optional[str] = None
    lichess_root: str = LICHESS_ROOT
    debug: bool = True
    sleep_seconds: float = DEFAULT_SLEEP_SECONDS
    thresholds: ScoreThresholds = DEFAULT_THRESHOLDS

    def __repr__(self) -> str:
        return (
            f"Settings(zulip_email={self.zulip_email!r}, zulip_site={self.zulip_site!r}, "
            f"zulip_channel={self.zulip_channel!r}, zulip_topic={self.zulip_topic!r}, "
            f"lichess_token={'***' if self.lichess_token else None}, debug={self.debug}, "
            f"sleep_seconds={self.sleep_seconds})"
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        When `environ` is None the process environment is used, after loading
        a .env file from the working directory.

        Raises:
            ConfigError: If Zulip credentials or site are missing, or a value
                does not parse.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        rc = {}
        rc_path = environ.get("ZULIPRC", DEFAULT_ZULIPRC)
        if Path(rc_path).is_file():
            rc = read_zuliprc(rc_path)

        email = environ.get("ZULIP_EMAIL") or rc.get("email")
        key = environ.get("ZULIP_KEY") or rc.get("key")
        site = environ.get("ZULIP_SITE") or rc.get("site")
        missing = [name for name, value in (("email", email), ("key", key), ("site", site)) if not value]
        if missing:
            raise ConfigError(f"missing Zulip settings: {', '.join(missing)}")

        try:
            sleep_seconds = float(environ.get("SANDBAG_SLEEP_SECONDS", DEFAULT_SLEEP_SECONDS))
        except ValueError as e:
            raise ConfigError(f"SANDBAG_SLEEP_SECONDS: {e}") from e

        return cls(
            zulip_email=email,
            zulip_key=key,
            zulip_site=site,
            zulip_channel=environ.get("ZULIP_CHANNEL", "mod"),
            zulip_topic=environ.get("ZULIP_TOPIC", "sandbagging"),
            lichess_token=environ.get("LICHESS_TOKEN") or None,
            lichess_root=environ.get("LICHESS_ROOT", LICHESS_ROOT),
            debug=_as_bool(environ.get("SANDBAG_DEBUG", "true")),
            sleep_seconds=sleep_seconds,
            thresholds=load_thresholds(environ.get("SANDBAG_THRESHOLDS")),
        )
