"""
auth/bootstrap.py -- One-time seeding of the root identity.

Creates:
  permission "*"
  group "Root" holding "*"
  user "root" (enabled) in "Root", password "toor"

The default password is public knowledge. Rotate it immediately:
    python main.py user passwd root

Running bootstrap twice fails with DuplicateKeyError on the first entity that
already exists; nothing is overwritten.

"*" is a literal permission name. Holding it does not grant other permissions.
"""

from __future__ import annotations

import logging

from auth.identity import IdentityManager
from auth.models import User

logger = logging.getLogger("permgate.auth")

ROOT_PERMISSION = "*"
ROOT_GROUP = "Root"
ROOT_USERNAME = "root"
ROOT_DEFAULT_PASSWORD = "toor"  # noqa: S105 # nosec B105 -- documented bootstrap default, must be rotated


def bootstrap(manager: IdentityManager) -> User:
    """Seed the wildcard permission, the root group and the root user."""
    manager.create_permission(ROOT_PERMISSION)
    manager.create_group(ROOT_GROUP)
    manager.add_permission_to_group(ROOT_GROUP, ROOT_PERMISSION)
    root = User(username=ROOT_USERNAME, enabled=True, name="Root", email="")
    manager.create_user(root, password=ROOT_DEFAULT_PASSWORD)
    manager.add_user_to_group(ROOT_USERNAME, ROOT_GROUP)
    logger.warning(
        "Bootstrap complete: user %r created with the default password. Rotate it now.",
        ROOT_USERNAME,
    )
    return root
