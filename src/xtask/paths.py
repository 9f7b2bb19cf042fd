# paths.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

APP_NAME = "xtask"
IS_WINDOWS = os.name == "nt"


def _home(env: Mapping[str, str]) -> Path:
    home = env.get("HOME") or env.get("USERPROFILE")
    return Path(home) if home else Path.home()


def _user_dir(kind: str, env: Optional[Mapping[str, str]], posix: str, windows: str) -> Path:
    env = env if env is not None else os.environ
    override = env.get(f"XTASK_{kind}_HOME")
    if override:
        return Path(override)

    xdg = env.get(f"XDG_{kind}_HOME")
    if xdg:
        return Path(xdg) / APP_NAME

    home = _home(env)
    if IS_WINDOWS:
        return home / windows / APP_NAME
    return home / posix / APP_NAME


def user_config_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    return _user_dir("CONFIG", env, ".config", "AppData/Roaming")


def user_data_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    return _user_dir("DATA", env, ".local/share", "AppData/Local")


def user_cache_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    return _user_dir("CACHE", env, ".cache", "AppData/Local/Cache")


def user_state_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    return _user_dir("STATE", env, ".local/state", "AppData/Local/State")
