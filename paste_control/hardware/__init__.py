"""
Hardware communication module.

Provides the serial G-code transport, command macros, camera feature
detection, operator prompts and the dispensing job executor.
"""

from paste_control.hardware.cancellation import CancellationToken, Outcome
from paste_control.hardware.job_executor import JobExecutor
from paste_control.hardware.serial_client import SerialClient

__all__ = ["CancellationToken", "Outcome", "JobExecutor", "SerialClient"]
