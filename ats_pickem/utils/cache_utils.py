"""
Cache utilities for the leaderboard read surface
Caches serialized query results and invalidates them by bumping a
per-model version number, so no key scan is needed on any backend.
"""

import functools

from flask import current_app

from ats_pickem import cache


def _version_key(model_name):
    return f"version_{model_name}"


def get_model_version(model_name):
    return cache.get(_version_key(model_name)) or 0


def make_cache_key(model_name, func_name, *args, **kwargs):
    """Generate a cache key from the model version and call arguments"""
    args_str = "_".join(str(arg) for arg in args)
    kwargs_str = "_".join(f"{k}_{v}" for k, v in sorted(kwargs.items()))
    version = get_model_version(model_name)
    return f"query_{model_name}_v{version}_{func_name}_{args_str}_{kwargs_str}"


def cached_query(model_name, timeout=None):
    """
    Decorator for caching database query results

    Args:
        model_name: Name of the model for cache key generation
        timeout: Cache timeout in seconds (default LEADERBOARD_CACHE_TIMEOUT)

    The wrapped function must return plain data (dicts/lists), not ORM rows.
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            cache_key = make_cache_key(model_name, f.__name__, *args, **kwargs)

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Query cache hit: {cache_key}")
                return result

            result = f(*args, **kwargs)
            cache.set(
                cache_key,
                result,
                timeout=timeout or current_app.config.get("LEADERBOARD_CACHE_TIMEOUT", 300),
            )
            current_app.logger.debug(f"Query cache set: {cache_key}")

            return result

        return wrapped

    return decorator


def invalidate_model_cache(model_name):
    """
    Invalidate all cache entries for a specific model

    Args:
        model_name: Name of the model to invalidate
    """
    try:
        cache.set(_version_key(model_name), get_model_version(model_name) + 1, timeout=0)
        current_app.logger.debug(f"Cache invalidated for {model_name}")
    except Exception as e:
        # Cached boards still expire after LEADERBOARD_CACHE_TIMEOUT
        current_app.logger.error(f"Failed to invalidate cache for {model_name}: {e}")


def get_cache_stats():
    """Get cache statistics"""
    return {
        "type": current_app.config.get("CACHE_TYPE", "Unknown"),
        "timeout": current_app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
        "leaderboard_version": get_model_version("leaderboard"),
    }
