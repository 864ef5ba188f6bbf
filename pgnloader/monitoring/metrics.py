"""
Run metrics for the ingestion pipeline.
Tracks per-component event counts, throughput, and operation latency.
"""
import time
import json
from datetime import datetime
from collections import defaultdict
import threading


class PipelineMetrics:
    """Thread-safe counters shared by every worker of one ingestion run."""

    def __init__(self):
        self.start_time = time.time()
        self.metrics = defaultdict(lambda: defaultdict(int))
        self.latencies = defaultdict(list)
        self._lock = threading.Lock()

    def record_event(self, component, event_type, count=1):
        """Record a countable event (games persisted, failed files, etc.)"""
        with self._lock:
            self.metrics[component][event_type] += count

    def record_latency(self, component, operation, duration_ms):
        """Record operation latency in milliseconds"""
        with self._lock:
            self.latencies[f"{component}.{operation}"].append(duration_ms)

    def get_count(self, component, event_type):
        with self._lock:
            return self.metrics[component][event_type] if component in self.metrics else 0

    def get_total(self, event_type):
        """Sum one event type across all components"""
        with self._lock:
            return sum(events.get(event_type, 0) for events in self.metrics.values())

    def get_throughput(self, component, event_type):
        """Calculate events per second"""
        elapsed = time.time() - self.start_time
        total_events = self.get_count(component, event_type)
        return total_events / elapsed if elapsed > 0 else 0

    def get_avg_latency(self, component, operation):
        """Calculate average latency in ms"""
        key = f"{component}.{operation}"
        with self._lock:
            latencies = list(self.latencies.get(key, []))
        return sum(latencies) / len(latencies) if latencies else 0

    def get_summary(self):
        """Get complete metrics summary"""
        elapsed = time.time() - self.start_time
        with self._lock:
            events_by_component = {c: dict(events) for c, events in self.metrics.items()}
            latency_keys = {key: len(samples) for key, samples in self.latencies.items()}

        summary = {
            'uptime_seconds': round(elapsed, 2),
            'timestamp': datetime.now().isoformat(),
            'components': {}
        }

        for component, events in events_by_component.items():
            summary['components'][component] = {
                'events': events,
                'throughput': {
                    event: f"{count / elapsed if elapsed > 0 else 0:.2f}/sec"
                    for event, count in events.items()
                }
            }

        summary['latencies'] = {
            key: {
                'avg_ms': round(self.get_avg_latency(*key.split('.', 1)), 2),
                'samples': samples
            }
            for key, samples in latency_keys.items()
        }

        return summary

    def print_summary(self):
        """Print formatted metrics summary"""
        summary = self.get_summary()
        print(f"\n{'='*60}")
        print(f"Pipeline Metrics Summary")
        print(f"{'='*60}")
        print(f"Uptime: {summary['uptime_seconds']}s")

        for component, data in summary['components'].items():
            print(f"\n{component.upper()}:")
            for event, count in data['events'].items():
                throughput = data['throughput'][event]
                print(f"  {event}: {count:,} ({throughput})")

        if summary['latencies']:
            print(f"\nLATENCIES:")
            for op, stats in summary['latencies'].items():
                print(f"  {op}: {stats['avg_ms']}ms avg ({stats['samples']} samples)")

        print(f"{'='*60}\n")

    def export_json(self, filepath):
        """Export metrics to JSON file"""
        with open(filepath, 'w') as f:
            json.dump(self.get_summary(), f, indent=2)
