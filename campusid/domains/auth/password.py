# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Password hashing utilities using bcrypt.

The local store keeps a bcrypt hash of every password next to the
provider-side credential. Hashing is CPU bound, so services call
hash_async, which runs bcrypt in a worker thread.

Example:
    >>> hasher = PasswordHasher()
    >>> hashed = hasher.hash("my_password")
    >>> hashed.startswith("$2b$12$")
    True
"""

import asyncio

import bcrypt

# bcrypt only considers the first 72 bytes of its input.
BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    """Secure password hashing using bcrypt.

    The default cost of 12 rounds keeps a single hash above 100 ms on
    current hardware.

    Attributes:
        _rounds: Number of bcrypt rounds for hashing.
    """

    def __init__(self, rounds: int = 12) -> None:
        """Initialize the password hasher.

        Args:
            rounds: Number of bcrypt rounds. Higher is more secure but slower.
        """
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        """Configured bcrypt cost."""
        return self._rounds

    @staticmethod
    def _encode(password: str) -> bytes:
        return password.encode("utf-8")[:BCRYPT_MAX_BYTES]

    def hash(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain text password to hash.

        Returns:
            Bcrypt hash string with salt embedded.

        Raises:
            ValueError: If password is empty.
        """
        if not password:
            raise ValueError("Password cannot be empty")

        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(self._encode(password), salt).decode("utf-8")

    async def hash_async(self, password: str) -> str:
        """Hash a password without blocking the event loop."""
        return await asyncio.to_thread(self.hash, password)
