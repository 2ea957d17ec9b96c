"""
Chaos Controller

Centralized fault-injection coordinator for a multi-service test environment:
- Master fault-state table per downstream service
- Best-effort fan-out of toggles to each service's /chaos/set endpoint
- Status view merging remote-reported and locally intended state
- Timed multi-step fault scenarios
"""

__version__ = "1.0.0"
__author__ = "InsureWatch Resilience Team"

from chaos_controller.config import Settings, get_settings

__all__ = ["__version__", "Settings", "get_settings"]
