from .maintenance import MaintenanceTask, SweepResult, run_sweep

__all__ = ["MaintenanceTask", "SweepResult", "run_sweep"]
