"""
Call contexts: environment overrides plus a cancellation scope.

A Context is passed to every Machine.command call. It is immutable as far as
values go: with_env and friends return a new Context that shares the parent's
cancellation scope. with_cancel and with_timeout create child scopes;
cancelling a parent cancels all of its children.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Mapping, Optional

__all__ = [
    "Context",
    "background",
    "envs",
    "with_env",
    "without_env",
    "unset_env",
]


class _Scope:
    """
    A node in the cancellation tree.

    A cancelled scope detaches from its parent, so a long-lived root only
    holds the children and callbacks that are still live.
    """

    def __init__(self, parent: Optional["_Scope"] = None, deadline: Optional[float] = None):
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._callbacks: dict[object, Callable[[], None]] = {}
        self._children: set[_Scope] = set()
        self._timer: Optional[threading.Timer] = None
        self._parent = parent
        self.deadline = deadline
        if parent is not None:
            if parent.deadline is not None:
                if self.deadline is None or parent.deadline < self.deadline:
                    self.deadline = parent.deadline
            parent._add_child(self)
        if self.deadline is not None and not self._event.is_set():
            remaining = self.deadline - time.monotonic()
            if remaining <= 0:
                self.cancel()
            else:
                self._timer = threading.Timer(remaining, self.cancel)
                self._timer.daemon = True
                self._timer.start()

    def _add_child(self, child: "_Scope") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.add(child)
                return
        child.cancel()

    def _remove_child(self, child: "_Scope") -> None:
        with self._lock:
            self._children.discard(child)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = list(self._callbacks.values()), {}
            children, self._children = list(self._children), set()
            timer, self._timer = self._timer, None
            parent, self._parent = self._parent, None
        if parent is not None:
            parent._remove_child(self)
        if timer is not None:
            timer.cancel()
        for child in children:
            child.cancel()
        for fn in callbacks:
            fn()

    def detach(self) -> None:
        with self._lock:
            parent, self._parent = self._parent, None
        if parent is not None:
            parent._remove_child(self)

    def on_cancel(self, fn: Callable[[], None]) -> Callable[[], None]:
        token = object()
        with self._lock:
            if not self._event.is_set():
                self._callbacks[token] = fn
                return lambda: self._forget(token)
        fn()
        return _noop

    def _forget(self, token: object) -> None:
        with self._lock:
            self._callbacks.pop(token, None)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


def _noop() -> None:
    pass


class Context:
    """
    Carries environment overrides and a cancellation scope across calls.

    Use background() for a root context. Contexts are cheap; derive new ones
    rather than mutating.
    """

    __slots__ = ("_env", "_scope")

    def __init__(self, env: Optional[Mapping[str, str]] = None, _scope: Optional[_Scope] = None):
        self._env = dict(env) if env else None
        self._scope = _scope if _scope is not None else _Scope()

    def _with_values(self, env: Optional[Mapping[str, str]]) -> "Context":
        return Context(env, _scope=self._scope)

    @property
    def env(self) -> Optional[dict[str, str]]:
        """A copy of the environment overrides, or None if there are none."""
        return dict(self._env) if self._env else None

    def with_cancel(self) -> tuple["Context", Callable[[], None]]:
        """Return a child context and the function that cancels it."""
        child = Context(self._env, _scope=_Scope(self._scope))
        return child, child.cancel

    def with_timeout(self, seconds: float) -> tuple["Context", Callable[[], None]]:
        """Return a child context that cancels itself after seconds."""
        scope = _Scope(self._scope, deadline=time.monotonic() + seconds)
        child = Context(self._env, _scope=scope)
        return child, child.cancel

    def cancel(self) -> None:
        """Cancel this context's scope and every scope derived from it."""
        self._scope.cancel()

    def detach(self) -> None:
        """
        Stop following the parent's cancellation without cancelling.

        Used for a derived context whose work was abandoned before it began,
        so the parent does not keep a reference to it.
        """
        self._scope.detach()

    @property
    def cancelled(self) -> bool:
        return self._scope.cancelled

    @property
    def deadline(self) -> Optional[float]:
        """Deadline as a time.monotonic() value, if any."""
        return self._scope.deadline

    def on_cancel(self, fn: Callable[[], None]) -> Callable[[], None]:
        """
        Run fn once when the context is cancelled (immediately if it already is).

        Returns:
            A function that unregisters fn. Call it once fn is no longer
            needed so a long-lived context does not keep it alive.
        """
        return self._scope.on_cancel(fn)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout elapses. Returns True if cancelled."""
        return self._scope.wait(timeout)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"Context(env={self._env!r}, {state})"


def background() -> Context:
    """Return a new root context with no environment and no deadline."""
    return Context()


def envs(ctx: Context) -> Optional[dict[str, str]]:
    """Return the environment overrides stored in ctx, or None."""
    return ctx.env


def with_env(ctx: Context, env: Mapping[str, str]) -> Context:
    """Return a context with env merged over ctx's environment."""
    merged = dict(ctx._env or {})
    merged.update(env)
    return ctx._with_values(merged)


def without_env(ctx: Context) -> Context:
    """
    Return a context with all environment overrides removed.

    Cancellation and deadlines are preserved.
    """
    if ctx._env is None:
        return ctx
    return ctx._with_values(None)


def unset_env(ctx: Context, name: str) -> Context:
    """Return a context with the named environment override removed."""
    if ctx._env is None:
        return ctx
    remaining = {k: v for k, v in ctx._env.items() if k != name}
    return ctx._with_values(remaining or None)
