"""Infrastructure modules for the pool agent"""

from .metrics import MetricsRecorder  # noqa: F401
from .healthcheck import StatusServer  # noqa: F401
from .state_store import StateStore  # noqa: F401

__all__ = [
	"MetricsRecorder",
	"StatusServer",
	"StateStore",
]
