"""
Frinder Ledger — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import conversations, credits, discovery, groups, matches, swipes, users

router = APIRouter()

router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(swipes.router, prefix="/swipes", tags=["Swipes"])
router.include_router(matches.router, prefix="/matches", tags=["Matches"])
router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
router.include_router(discovery.router, prefix="/discovery", tags=["Discovery"])
router.include_router(credits.router, prefix="/credits", tags=["Credits"])
router.include_router(groups.router, prefix="/groups", tags=["Groups"])
