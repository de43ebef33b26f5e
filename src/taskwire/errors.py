from __future__ import annotations

import typing as t
from contextlib import aclosing
from functools import singledispatch, wraps

if t.TYPE_CHECKING:
    from types import TracebackType


class ErrorTransformer(t.ContextManager[None], t.AsyncContextManager[None]):
    """Re-raises client library errors as taskwire errors.

    Handlers are registered per exception type (the most specific registered base class wins). A handler returns
    the error to raise instead, or `None` to let the original error propagate as is.
    """

    def __init__(self) -> None:
        self.__transform = singledispatch(self.__keep)

    def __enter__(self) -> None:
        pass

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
        /,
    ) -> None:
        self.__handle(exc_value)

    async def __aenter__(self) -> None:
        pass

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
        /,
    ) -> None:
        self.__handle(exc_value)

    def register[U: BaseException](
        self,
        func: t.Callable[[U], BaseException | None],
    ) -> t.Callable[[U], BaseException | None]:
        self.__transform.register(func)
        return func

    def wrap[**U, V](
        self,
        func: t.Callable[U, t.Coroutine[t.Any, t.Any, V]],
    ) -> t.Callable[U, t.Coroutine[t.Any, t.Any, V]]:
        @wraps(func)
        async def wrapper(*args: U.args, **kwargs: U.kwargs) -> V:
            with self:
                return await func(*args, **kwargs)

        return wrapper

    def wrap_iter[**U, V](
        self,
        func: t.Callable[U, t.AsyncIterator[V]],
    ) -> t.Callable[U, t.AsyncIterator[V]]:
        @wraps(func)
        async def wrapper(*args: U.args, **kwargs: U.kwargs) -> t.AsyncIterator[V]:
            with self:
                # NOTE: close the inner generator right away when the outer one is closed (e.g. consumer breaks).
                async with aclosing(t.cast(t.AsyncGenerator[V, None], func(*args, **kwargs))) as items:
                    async for item in items:
                        yield item

        return wrapper

    def __keep(self, _: BaseException) -> BaseException | None:
        return None

    def __handle(self, err: BaseException | None) -> None:
        if err is None:
            return

        transformed_err = self.__transform(err)
        if transformed_err is None or transformed_err is err:
            return

        raise transformed_err from err
