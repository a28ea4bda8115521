import asyncio
import logging

from realmgate.auth.tokens import sweep_expired_tokens
from realmgate.db.session import SessionLocal

logger = logging.getLogger(__name__)


def sweep_once(session_factory=SessionLocal) -> int:
    db = session_factory()
    try:
        swept = sweep_expired_tokens(db)
    finally:
        db.close()
    if swept:
        logger.info("Token sweep deactivated %s expired token(s)", swept)
    return swept


async def run_token_sweeper(interval_seconds: int, session_factory=SessionLocal) -> None:
    """Background loop deactivating access-expired tokens until cancelled."""
    interval = max(interval_seconds, 60)
    try:
        while True:
            try:
                await asyncio.to_thread(sweep_once, session_factory)
            except asyncio.CancelledError:
                raise
            except Exception:
                # keep the loop alive; the next run retries
                logger.exception("Token sweep failed")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("Token sweeper stopped")
