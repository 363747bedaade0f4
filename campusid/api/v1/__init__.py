# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    auth: Registration, login, email verification and password reset.
    parent_relations: Parent-student link verification and invitations.
"""

from fastapi import APIRouter

from campusid.api.v1 import auth, parent_relations

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

# Include domain routers
router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(parent_relations.router, prefix="/parent-relations", tags=["Parent Relations"])
