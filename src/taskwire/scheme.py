import enum
import typing as t


class Scheme(enum.Enum):
    AMQP = enum.auto()
    REDIS = enum.auto()
    MEMCACHE = enum.auto()
    MONGODB = enum.auto()
    EAGER = enum.auto()
    UNKNOWN = enum.auto()


# NOTE: order matters, the first matching prefix wins. `eager` has no `://` part, so any string starting with `eager`
#  (`eager`, `eager://`, `eagerly`) is matched.
SCHEME_PREFIXES: t.Final[t.Sequence[tuple[str, Scheme]]] = (
    ("amqp://", Scheme.AMQP),
    ("memcache://", Scheme.MEMCACHE),
    ("redis://", Scheme.REDIS),
    ("mongodb://", Scheme.MONGODB),
    ("eager", Scheme.EAGER),
)


def detect_scheme(url: str) -> Scheme:
    for prefix, scheme in SCHEME_PREFIXES:
        if url.startswith(prefix):
            return scheme

    return Scheme.UNKNOWN


def get_prefix(scheme: Scheme) -> str:
    for prefix, known in SCHEME_PREFIXES:
        if known is scheme:
            return prefix

    details = "scheme has no prefix"
    raise ValueError(details, scheme)
