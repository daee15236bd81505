from datetime import datetime
from typing import Dict, Optional
import logging
import threading
import psutil


class HeartbeatMonitor:
    """
    Watchdog for the live scheduler. Every completed monitoring cycle calls
    beat(); a daemon thread samples host load and escalates to WARNING or
    CRITICAL when cycles stop completing.
    """

    def __init__(self, logger: logging.Logger, heartbeat_interval: int = 30,
                 warning_threshold: int = 60,
                 critical_threshold: int = 90,
                 resource_limit_percent: float = 80.0):
        self.logger = logger
        self.heartbeat_interval = heartbeat_interval    # seconds between health checks
        self.warning_threshold = warning_threshold      # seconds without a cycle before WARNING
        self.critical_threshold = critical_threshold    # seconds without a cycle before CRITICAL
        self.resource_limit_percent = resource_limit_percent

        self.last_heartbeat: Optional[datetime] = None
        self.cycles_seen = 0
        self.last_cycle: Dict = {}
        self.system_metrics: Dict = {}
        self.system_status = "INITIALIZING"

        self.monitor_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start_monitoring(self):
        self.logger.info("Starting heartbeat monitor")
        self.system_status = "RUNNING"
        self._stop_event.clear()
        self.beat()

        self.monitor_thread = threading.Thread(target=self._monitor_loop, daemon=True, name='HeartbeatMonitor')
        self.monitor_thread.start()

    def beat(self, active_tokens: int = 0, open_positions: int = 0):
        """Record a completed monitoring cycle"""
        self.last_heartbeat = datetime.now()
        self.cycles_seen += 1
        self.last_cycle = {'active_tokens': active_tokens, 'open_positions': open_positions}

    def _monitor_loop(self):
        while not self._stop_event.is_set():
            try:
                self._sample_resources()
                self._verify_system_health()
            except Exception as e:
                self.logger.error(f"Monitor loop error: {str(e)}")
                self.system_status = "ERROR"
            self._stop_event.wait(self.heartbeat_interval)

    def _sample_resources(self):
        self.system_metrics = {
            'timestamp': datetime.now(),
            'cpu_usage': psutil.cpu_percent(),
            'memory_usage': psutil.virtual_memory().percent,
        }

    def _verify_system_health(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        status = "RUNNING"

        for key, label in (('cpu_usage', 'CPU'), ('memory_usage', 'memory')):
            usage = self.system_metrics.get(key, 0)
            if usage > self.resource_limit_percent:
                self.logger.warning(f"High {label} usage: {usage}%")
                status = "WARNING"

        if self.last_heartbeat:
            silent_for = (now - self.last_heartbeat).total_seconds()
            if silent_for > self.critical_threshold:
                status = "CRITICAL"
                self.logger.critical(f"No completed monitoring cycle for {silent_for:.0f} seconds")
            elif silent_for > self.warning_threshold:
                status = "WARNING"
                self.logger.warning(f"Monitoring cycle delayed for {silent_for:.0f} seconds")

        self.system_status = status
        return status

    def get_status(self) -> Dict:
        return {
            'status': self.system_status,
            'last_heartbeat': self.last_heartbeat,
            'cycles_seen': self.cycles_seen,
            'last_cycle': self.last_cycle,
            'metrics': self.system_metrics,
        }

    def stop_monitoring(self):
        self.logger.info("Stopping heartbeat monitor")
        self._stop_event.set()
        if self.monitor_thread:
            self.monitor_thread.join(timeout=5.0)
        self.system_status = "STOPPED"
