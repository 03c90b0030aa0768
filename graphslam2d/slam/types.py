"""Type definitions and key conventions for 2D graph SLAM.

Key types:
    - Pose2: SE(2) pose representation [x, y, theta]
    - symbol / landmark_key: character-tagged integer keys

Poses are keyed by the plain integer id found in the graph file. Landmarks
live in their own key space, ``symbol('l', j)``, so that landmark ``j`` never
collides with pose ``j``.
"""

from dataclasses import dataclass

import numpy as np


# Number of low bits holding the index of a character-tagged key.
_INDEX_BITS = 56
_INDEX_MASK = (1 << _INDEX_BITS) - 1


def symbol(chr_tag: str, index: int) -> int:
    """
    Build an integer key from a one-character tag and an index.

    The tag occupies the top byte of a 64-bit key and the index the
    remaining 56 bits.

    Args:
        chr_tag: Single character, e.g. 'l' for landmarks.
        index: Non-negative integer index.

    Returns:
        Integer key.

    Raises:
        ValueError: If chr_tag is not a single character or index is out
            of range.

    Examples:
        >>> symbol('l', 3) == (ord('l') << 56) | 3
        True
    """
    if len(chr_tag) != 1:
        raise ValueError(f"chr_tag must be a single character, got {chr_tag!r}")
    if index < 0 or index > _INDEX_MASK:
        raise ValueError(f"index must be in [0, 2^56), got {index}")
    return (ord(chr_tag) << _INDEX_BITS) | int(index)


def symbol_chr(key: int) -> str:
    """Return the character tag of a key ('' for plain integer keys)."""
    tag = key >> _INDEX_BITS
    return chr(tag) if tag else ""


def symbol_index(key: int) -> int:
    """Return the index part of a key."""
    return key & _INDEX_MASK


def landmark_key(index: int) -> int:
    """Key of landmark ``index`` (``symbol('l', index)``)."""
    return symbol("l", index)


def format_key(key: int) -> str:
    """Human-readable key, e.g. '12' for a pose or 'l3' for a landmark."""
    return f"{symbol_chr(key)}{symbol_index(key)}"


@dataclass
class Pose2:
    """
    SE(2) pose: position (x, y) and heading theta.

    Accepted wherever the SE(2) functions take a pose array.

    Attributes:
        x, y: Position in meters.
        theta: Heading in radians, counter-clockwise from +x.

    Examples:
        >>> p = Pose2(x=1.0, y=2.0, theta=np.pi / 4)
        >>> p.to_array()
        array([1.        , 2.        , 0.78539816])
    """

    x: float
    y: float
    theta: float

    def __post_init__(self) -> None:
        for name in ("x", "y", "theta"):
            if not np.isfinite(getattr(self, name)):
                raise ValueError(f"Pose2.{name} must be finite, got {getattr(self, name)}")

    def to_array(self) -> np.ndarray:
        """Convert pose to NumPy array [x, y, theta]."""
        return np.array([self.x, self.y, self.theta], dtype=np.float64)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "Pose2":
        """
        Create Pose2 from NumPy array [x, y, theta].

        Raises:
            ValueError: If array does not have shape (3,).
        """
        arr = np.asarray(arr, dtype=np.float64)
        if arr.shape != (3,):
            raise ValueError(f"Array must have shape (3,), got {arr.shape}")
        return cls(x=float(arr[0]), y=float(arr[1]), theta=float(arr[2]))

    @classmethod
    def identity(cls) -> "Pose2":
        """Pose at the origin with zero heading."""
        return cls(x=0.0, y=0.0, theta=0.0)

    def __repr__(self) -> str:
        return f"Pose2(x={self.x:.4f}, y={self.y:.4f}, theta={self.theta:.4f})"

