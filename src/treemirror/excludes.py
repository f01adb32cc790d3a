from __future__ import annotations

from .config import EXCLUDED_FILE_NAMES, EXCLUDED_FOLDERS


def is_excluded_folder_name(name: str) -> bool:
    return name in EXCLUDED_FOLDERS


def is_excluded_file_name(name: str) -> bool:
    return name in EXCLUDED_FILE_NAMES


def is_excluded_name(name: str, *, is_dir: bool) -> bool:
    if is_dir:
        return is_excluded_folder_name(name)
    return is_excluded_file_name(name)
