import typing as t

from yarl import URL

from taskwire.debug import is_debug_enabled

MASK: t.Final[str] = "***"


def to_str_obj(obj: object, **kwargs: object) -> str:
    parts = [f"{to_str_type(type(obj))} object at {hex(id(obj))}"]
    for key, value in kwargs.items():
        parts.append(f"{key}={value}")

    return f"""<{"; ".join(parts)}>"""


def to_str_type(type_: type[object]) -> str:
    return f"{type_.__module__}.{type_.__name__}"


def mask_secret(value: str | None) -> str | None:
    if not value or is_debug_enabled():
        return value

    return MASK


def mask_url(value: str) -> str:
    if is_debug_enabled():
        return value

    try:
        url = URL(value)

    except ValueError:
        # NOTE: the url can't be parsed, so there is no way to find the password in it.
        return MASK

    return str(url.with_password(MASK)) if url.password else value
