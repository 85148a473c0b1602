import asyncio
import functools
import logging


def _describe_args(args, kwargs) -> str:
    args_repr = [repr(a) for a in args]
    kwargs_repr = [f"{k}={v!r}" for k, v in kwargs.items()]
    return ", ".join(args_repr + kwargs_repr)


def log_call(*, show_args=True, show_result=False):
    """
    Trace calls at DEBUG level. Works for plain functions and coroutines.

    Args:
        show_args: Log function arguments (default: True)
        show_result: Log return value (default: False)
    """

    def decorator(func):
        logger = logging.getLogger(func.__module__)
        name = func.__qualname__

        def enter(args, kwargs):
            if not logger.isEnabledFor(logging.DEBUG):
                return
            if show_args:
                logger.debug("-> %s(%s)", name, _describe_args(args, kwargs))
            else:
                logger.debug("-> %s", name)

        def leave(result):
            if not logger.isEnabledFor(logging.DEBUG):
                return
            if show_result:
                logger.debug("<- %s => %r", name, result)
            else:
                logger.debug("<- %s", name)

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                enter(args, kwargs)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error("%s failed: %s", name, e)
                    raise
                leave(result)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            enter(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error("%s failed: %s", name, e)
                raise
            leave(result)
            return result

        return wrapper

    return decorator
