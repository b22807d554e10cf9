"""Run independent read queries for one request side by side.

Each call runs inside its own application context (and therefore its own
scoped session), so callables must return plain data, not ORM instances
bound to a session that is torn down when the worker finishes.
"""
from concurrent.futures import ThreadPoolExecutor

from flask import current_app


def _in_app_context(app, func, args):
    with app.app_context():
        return func(*args)


def gather(*calls):
    """Run ``(func, *args)`` tuples concurrently and return results in call order."""
    if not calls:
        return []

    workers = int(current_app.config.get('QUERY_FANOUT_WORKERS') or 0)
    if workers <= 1 or len(calls) == 1:
        return [func(*args) for func, *args in calls]

    app = current_app._get_current_object()
    with ThreadPoolExecutor(max_workers=min(workers, len(calls))) as executor:
        futures = [
            executor.submit(_in_app_context, app, func, args)
            for func, *args in calls
        ]
        return [future.result() for future in futures]
