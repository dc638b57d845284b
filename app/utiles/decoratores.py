import inspect
from functools import wraps
from fastapi import HTTPException
from app.core.exceptions import SchedulingError, GenerationExhausted
from app.utiles.logger import get_logger

logger = get_logger(__name__)


def _log_rejection(func_name, exc):
    if isinstance(exc, GenerationExhausted):
        # Systemic contention; needs operator attention
        logger.error(f"{exc.error} in {func_name}: {exc.detail}")
    elif isinstance(exc, SchedulingError):
        logger.warning(f"{exc.error} in {func_name}: {exc.message}")
    else:
        logger.warning(f"HTTPException in {func_name}: {exc.detail}")


def handle_exceptions(func):
    """Log endpoint calls, pass HTTP/scheduling errors through and turn anything else into a 500."""
    if inspect.iscoroutinefunction(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                logger.info(f"Calling endpoint: {func.__name__}")
                result = await func(*args, **kwargs)
                logger.info(f"Endpoint {func.__name__} completed successfully")
                return result
            except HTTPException as he:
                _log_rejection(func.__name__, he)
                raise
            except Exception as e:
                logger.exception(f"Unhandled error in endpoint {func.__name__} - {str(e)}")
                raise HTTPException(status_code=500, detail="Internal Server Error")
        return wrapper

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        try:
            logger.info(f"Calling endpoint: {func.__name__}")
            result = func(*args, **kwargs)
            logger.info(f"Endpoint {func.__name__} completed successfully")
            return result
        except HTTPException as he:
            _log_rejection(func.__name__, he)
            raise
        except Exception as e:
            logger.exception(f"Unhandled error in endpoint {func.__name__} - {str(e)}")
            raise HTTPException(status_code=500, detail="Internal Server Error")
    return sync_wrapper
