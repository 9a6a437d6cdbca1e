"""Path translation between Windows and WSL.

C:\\Users\\user\\gt        <->  /mnt/c/Users/user/gt
/home/user/project        <->  \\\\wsl.localhost\\Ubuntu\\home\\user\\project

Both directions are total: input that does not match a known form is
returned unchanged.
"""

import re

_DRIVE_PATH = re.compile(r"^([A-Za-z]):(?:[\\/]|$)")
_MOUNT_PATH = re.compile(r"^/mnt/([A-Za-z])(?=/|$)")
_UNC_PATH = re.compile(r"^\\\\wsl(?:\.localhost|\$)\\[^\\]+(.*)$", re.IGNORECASE)

UNC_PREFIX = "\\\\wsl.localhost\\"


def is_windows_path(path: str) -> bool:
    """True for drive-letter or UNC paths."""
    return bool(_DRIVE_PATH.match(path)) or path.startswith("\\\\")


def to_wsl_path(path: str) -> str:
    """Convert a Windows path to the form seen from inside WSL.

    Drive-letter paths map to /mnt/<drive>; \\\\wsl.localhost\\<distro> and
    \\\\wsl$\\<distro> share paths map back to the distro's own root.

    Args:
        path: A path as seen from Windows.

    Returns:
        The path as seen from inside WSL, or the input unchanged if it is in
        neither form.
    """
    if not path:
        return path
    unc = _UNC_PATH.match(path)
    if unc:
        return unc.group(1).replace("\\", "/") or "/"
    match = _DRIVE_PATH.match(path)
    if not match:
        return path
    drive = match.group(1).lower()
    rest = path[2:].replace("\\", "/")
    if not rest:
        rest = "/"
    return f"/mnt/{drive}{rest}"


def to_windows_path(path: str, distro: str) -> str:
    """Convert a WSL path to one Windows can open.

    /mnt/<drive> paths map back to the drive letter; other absolute paths map
    to the \\\\wsl.localhost\\<distro> network share.

    Args:
        path: A path as seen from inside WSL.
        distro: WSL distribution name used for the network share.

    Returns:
        The Windows path, or the input unchanged if it is already a Windows
        path or is relative.
    """
    if not path or is_windows_path(path) or not path.startswith("/"):
        return path
    match = _MOUNT_PATH.match(path)
    if match:
        drive = match.group(1).upper()
        rest = path[match.end():].replace("/", "\\") or "\\"
        return drive + ":" + rest
    return UNC_PREFIX + distro + path.replace("/", "\\")
