"""Input validation utilities."""

import base64
import binascii
import re
from pathlib import Path
from typing import List

from host_provisioner.exceptions import ValidationError

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*[$]?$")
KEY_TYPES = (
    "ssh-ed25519",
    "ssh-rsa",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-nistp256@openssh.com",
)


class Validator:
    """Validate operator input."""

    @staticmethod
    def validate_port(port: int) -> None:
        """Validate port number.

        Raises:
            ValidationError: If port is invalid
        """
        if not (1 <= port <= 65535):
            raise ValidationError(f"Invalid port: {port}. Must be between 1-65535")

    @staticmethod
    def validate_port_entry(entry: str) -> str:
        """Validate a ufw port argument such as ``443`` or ``53/udp``.

        Returns:
            The stripped entry

        Raises:
            ValidationError: If the number or protocol is invalid
        """
        entry = (entry or "").strip()
        number, _, proto = entry.partition("/")
        if not number.isdigit():
            raise ValidationError(f"Invalid port: {entry}")
        Validator.validate_port(int(number))
        if proto and proto not in ("tcp", "udp"):
            raise ValidationError(f"Invalid protocol in port {entry}: {proto}")
        return entry

    @staticmethod
    def validate_username(username: str) -> str:
        """Validate a POSIX account name.

        Returns:
            The stripped username

        Raises:
            ValidationError: If the name is empty, too long or malformed
        """
        name = (username or "").strip()
        if not name:
            raise ValidationError("Empty username")
        if len(name) > 32:
            raise ValidationError(f"Username too long: {name}")
        if not USERNAME_PATTERN.match(name):
            raise ValidationError(f"Invalid username format: {name}")
        if name == "root":
            raise ValidationError("Refusing to use root as the admin account")
        return name

    @staticmethod
    def validate_public_key(key: str) -> str:
        """Validate a single OpenSSH public key line.

        Returns:
            The normalized key line

        Raises:
            ValidationError: If the key type or body is not recognised
        """
        line = " ".join((key or "").split())
        parts = line.split(" ", 2)
        if len(parts) < 2:
            raise ValidationError("Public key must be '<type> <base64> [comment]'")

        key_type, body = parts[0], parts[1]
        if key_type not in KEY_TYPES:
            raise ValidationError(f"Unsupported key type: {key_type}")
        try:
            base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Malformed key data for {key_type}") from e
        return line

    @staticmethod
    def validate_public_keys(keys: List[str]) -> List[str]:
        """Validate and de-duplicate keys, keeping their order."""
        normalized: List[str] = []
        for key in keys:
            if not key or not key.strip():
                continue
            line = Validator.validate_public_key(key)
            if line not in normalized:
                normalized.append(line)
        if not normalized:
            raise ValidationError("At least one public key is required")
        return normalized

    @staticmethod
    def has_authorized_key(auth_keys: Path) -> bool:
        """Check if an authorized_keys file holds at least one usable key."""
        try:
            if not auth_keys.exists() or auth_keys.stat().st_size == 0:
                return False
            content = auth_keys.read_text()
        except OSError:
            return False

        for line in content.splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                if any(line.startswith(kt) for kt in KEY_TYPES):
                    return True
        return False
