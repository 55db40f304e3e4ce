# Import models so Base metadata is aware of them
from .arena import MatchRecord  # noqa: F401
