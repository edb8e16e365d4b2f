"""Platform file identity.

On POSIX the identity of a file is its inode number. Windows reports a file
index through ``st_ino`` on NTFS; filesystems that report 0 have no stable
identity and every comparison against them is a mismatch.
"""

import os


def identity_of(st: os.stat_result) -> dict | None:
    """Return the identity token stored in bookmarks, or None if unsupported."""
    if not st.st_ino:
        return None
    return {"inode": st.st_ino}


def _inode(token) -> int | None:
    if not isinstance(token, dict):
        return None
    inode = token.get("inode")
    if isinstance(inode, bool) or not isinstance(inode, int):
        return None
    return inode


def same_identity(a, b) -> bool:
    """Compare two identity tokens. Unknown identities never match."""
    ia = _inode(a)
    ib = _inode(b)
    if ia is None or ib is None:
        return False
    return ia == ib


def same_file(a: os.stat_result, b: os.stat_result) -> bool | None:
    """Compare two live stat results by device and inode.

    Returns None when either side has no usable identity.
    """
    if identity_of(a) is None or identity_of(b) is None:
        return None
    return os.path.samestat(a, b)
