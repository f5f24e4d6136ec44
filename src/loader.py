"""
Reconciliation Loader - turns the stored source into a callable reconciler.

The source is compiled into a fresh module object on every call to
:meth:`ReconciliationLoader.load`, so an edit is picked up by the very next
event without any reload step.
"""

import asyncio
import inspect
import logging
import types
import uuid
from typing import Any, Callable, Optional

from code_store import CodeStore
from logstream import LogBroadcaster
from plugins.reconcilers.base import ReconcileContext
from resources import ResourceObject

logger = logging.getLogger(__name__)

ENTRY_POINT = "reconcile"
MODULE_FILENAME = "<reconciler>"


class LoadError(Exception):
    """Raised when the reconciliation source cannot be turned into a reconciler."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InvocableReconciler:
    """
    The loaded, callable form of the reconciliation source.

    Wraps the module's ``reconcile`` entry point and hides whether it is a
    coroutine function and whether it takes the context argument.
    """

    def __init__(self, module: types.ModuleType, entry_point: Callable[..., Any]):
        self.module = module
        self.entry_point = entry_point
        self.is_async = inspect.iscoroutinefunction(entry_point)
        self.takes_context = _accepts_context(entry_point)

    async def invoke(self, resource: ResourceObject, ctx: ReconcileContext) -> Any:
        """
        Run the entry point for one resource.

        Coroutine functions are awaited on the running loop. Plain functions
        run in a worker thread so the loop keeps serving while they block.

        Returns:
            Whatever the entry point returned (after awaiting, if needed).
        """
        args = (resource, ctx) if self.takes_context else (resource,)
        if self.is_async:
            return await self.entry_point(*args)
        result = await asyncio.to_thread(self.entry_point, *args)
        if inspect.isawaitable(result):
            result = await result
        return result


def _accepts_context(func: Callable[..., Any]) -> bool:
    """
    Decide whether ``func`` is called as f(resource, ctx) or f(resource).

    Raises:
        TypeError: If the signature accepts neither form.
    """
    signature = inspect.signature(func)
    try:
        signature.bind(None, None)
        return True
    except TypeError:
        pass
    signature.bind(None)
    return False


class ReconciliationLoader:
    """
    Compiles reconciliation source into an :class:`InvocableReconciler`.

    Load failures are reported to the log broadcaster as one error record and
    raised as :class:`LoadError`.
    """

    def __init__(
        self,
        code_store: CodeStore,
        broadcaster: Optional[LogBroadcaster] = None,
    ):
        self.code_store = code_store
        self._broadcaster = broadcaster

    def load(self, source: Optional[str] = None) -> InvocableReconciler:
        """
        Load the reconciler from ``source`` or, by default, the code store.

        Args:
            source: Source text to load instead of the stored one.

        Returns:
            A freshly loaded InvocableReconciler.

        Raises:
            LoadError: On syntax errors, errors raised by the module body, or
                a missing/unusable ``reconcile`` entry point.
        """
        if source is None:
            source = self.code_store.read()

        try:
            return self._load(source)
        except LoadError as e:
            logger.warning(f"Reconciler failed to load: {e}")
            if self._broadcaster is not None:
                self._broadcaster.error(f"Failed to load reconciler: {e}")
            raise

    def _load(self, source: str) -> InvocableReconciler:
        try:
            code = compile(source, MODULE_FILENAME, "exec")
        except SyntaxError as e:
            raise LoadError(
                f"Syntax error at line {e.lineno}: {e.msg}", cause=e
            ) from e
        except ValueError as e:
            # e.g. source containing null bytes
            raise LoadError(f"Invalid source: {e}", cause=e) from e

        module = types.ModuleType(f"reconciler_{uuid.uuid4().hex}")
        module.__file__ = MODULE_FILENAME
        try:
            exec(code, module.__dict__)
        except BaseException as e:
            raise LoadError(
                f"Error while executing module: {type(e).__name__}: {e}", cause=e
            ) from e

        entry_point = getattr(module, ENTRY_POINT, None)
        if entry_point is None:
            raise LoadError("Reconcile function not found in reconciler module")
        if not callable(entry_point):
            raise LoadError(
                f"'{ENTRY_POINT}' must be a function, "
                f"got {type(entry_point).__name__}"
            )

        try:
            return InvocableReconciler(module, entry_point)
        except (TypeError, ValueError) as e:
            raise LoadError(
                f"'{ENTRY_POINT}' must accept (resource) or (resource, ctx): {e}",
                cause=e,
            ) from e
