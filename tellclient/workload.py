"""
Threaded Workload Driver

Drives one or more TellStore servers the way the benchmarking harness
does: one worker thread per client instance, each with its own
connection, issuing a weighted mix of insert / read / update / delete
operations and recording the status and latency of every request.
"""

import logging
import random
import statistics
import string
import threading
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .client import TellStoreClient
from .protocol.commands import Operation, Status
from .protocol.errors import ClientError

logger = logging.getLogger(__name__)


@dataclass
class WorkloadConfig:
    """Shape of the generated workload."""
    threads: int = 4
    operations_per_thread: int = 1000
    records_per_thread: int = 100
    table: str = "usertable"
    field_count: int = 10
    field_length: int = 100
    read_proportion: float = 0.5
    update_proportion: float = 0.3
    insert_proportion: float = 0.1
    delete_proportion: float = 0.1
    seed: Optional[int] = None

    def weights(self) -> Dict[Operation, float]:
        weights = {
            Operation.READ: self.read_proportion,
            Operation.UPDATE: self.update_proportion,
            Operation.INSERT: self.insert_proportion,
            Operation.DELETE: self.delete_proportion,
        }
        if any(w < 0 for w in weights.values()) or sum(weights.values()) <= 0:
            raise ValueError("Operation proportions must be non-negative and not all zero")
        return weights


@dataclass
class RequestResult:
    """Result of a single request."""
    operation: Operation
    status: Status
    latency_ms: float

    @property
    def success(self) -> bool:
        return self.status in (Status.OK, Status.NOT_FOUND)


@dataclass
class WorkloadResults:
    """Aggregated workload results."""
    # Configuration
    threads: int
    operations_per_thread: int

    # Timing
    start_time: str = ""
    end_time: str = ""
    total_duration_seconds: float = 0.0

    # Counts
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    failed_clients: int = 0

    # Per operation and status, e.g. {"read": {"OK": 10}}
    operations: Dict[str, Dict[str, int]] = field(default_factory=dict)
    # Clients bound to each endpoint
    endpoints: Dict[str, int] = field(default_factory=dict)

    # Latency stats (milliseconds)
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_mean: float = 0.0
    latency_median: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0

    # Throughput
    requests_per_second: float = 0.0

    # Error rate
    error_rate: float = 0.0

    # Raw latencies for percentile calculation
    latencies: List[float] = field(default_factory=list)

    def add(self, result: RequestResult) -> None:
        self.total_requests += 1
        if result.success:
            self.successful_requests += 1
            self.latencies.append(result.latency_ms)
        else:
            self.failed_requests += 1
        by_status = self.operations.setdefault(result.operation.value, {})
        by_status[result.status.value] = by_status.get(result.status.value, 0) + 1

    def calculate_stats(self) -> None:
        """Calculate statistics from raw latencies."""
        self.error_rate = (
            self.failed_requests / self.total_requests * 100
            if self.total_requests > 0 else 0
        )
        self.requests_per_second = (
            self.total_requests / self.total_duration_seconds
            if self.total_duration_seconds > 0 else 0
        )

        if not self.latencies:
            return

        sorted_latencies = sorted(self.latencies)
        n = len(sorted_latencies)

        self.latency_min = sorted_latencies[0]
        self.latency_max = sorted_latencies[-1]
        self.latency_mean = statistics.mean(sorted_latencies)
        self.latency_median = statistics.median(sorted_latencies)

        p95_idx = min(int(n * 0.95), n - 1)
        p99_idx = min(int(n * 0.99), n - 1)
        self.latency_p95 = sorted_latencies[p95_idx]
        self.latency_p99 = sorted_latencies[p99_idx]

    def to_dict(self) -> dict:
        """Convert to dictionary (excluding raw latencies)."""
        d = asdict(self)
        del d['latencies']
        return d


class WorkloadRunner:
    """
    Runs a WorkloadConfig with one client per thread.

    Usage:
        runner = WorkloadRunner(config, lambda: TellStoreClient(props))
        results = runner.run()
    """

    def __init__(self, config: WorkloadConfig,
                 client_factory: Callable[[], TellStoreClient]):
        self.config = config
        self.client_factory = client_factory
        self.weights = config.weights()

        self._results_lock = threading.Lock()
        self._results: List[RequestResult] = []
        self._endpoints: Counter = Counter()
        self._failed_clients = 0

    def _random_value(self, rng: random.Random) -> str:
        return ''.join(rng.choices(string.ascii_letters + string.digits, k=self.config.field_length))

    def _record(self, rng: random.Random) -> Dict[str, str]:
        return {f"field{i}": self._random_value(rng) for i in range(self.config.field_count)}

    def _timed(self, operation: Operation, call: Callable[[], Status]) -> RequestResult:
        start = time.perf_counter()
        status = call()
        elapsed_ms = (time.perf_counter() - start) * 1000
        return RequestResult(operation=operation, status=status, latency_ms=elapsed_ms)

    def _worker(self, worker_id: int) -> None:
        config = self.config
        seed = None if config.seed is None else config.seed + worker_id
        rng = random.Random(seed)
        client = self.client_factory()

        try:
            client.init()
        except (ClientError, ValueError) as e:
            logger.error(f"Worker {worker_id} could not initialize: {e}")
            with self._results_lock:
                self._failed_clients += 1
            return

        results: List[RequestResult] = []
        keys: List[str] = []
        next_key = 0

        def new_key() -> str:
            nonlocal next_key
            key = f"user{worker_id:03d}-{next_key:08d}"
            next_key += 1
            return key

        try:
            for _ in range(config.records_per_thread):
                key = new_key()
                result = self._timed(
                    Operation.INSERT,
                    lambda: client.insert(config.table, key, self._record(rng)),
                )
                results.append(result)
                if result.status is Status.OK:
                    keys.append(key)

            operations = list(self.weights)
            weights = [self.weights[op] for op in operations]
            for _ in range(config.operations_per_thread):
                operation = rng.choices(operations, weights=weights)[0]
                if operation is not Operation.INSERT and not keys:
                    operation = Operation.INSERT

                if operation is Operation.INSERT:
                    key = new_key()
                    result = self._timed(
                        operation, lambda: client.insert(config.table, key, self._record(rng))
                    )
                    if result.status is Status.OK:
                        keys.append(key)
                elif operation is Operation.READ:
                    key = rng.choice(keys)
                    result = self._timed(operation, lambda: client.read(config.table, key))
                elif operation is Operation.UPDATE:
                    key = rng.choice(keys)
                    result = self._timed(
                        operation, lambda: client.update(config.table, key, self._record(rng))
                    )
                else:
                    key = keys.pop(rng.randrange(len(keys)))
                    result = self._timed(operation, lambda: client.delete(config.table, key))
                results.append(result)
        except Exception as e:
            logger.exception(f"Worker {worker_id} crashed after {len(results)} requests: {e}")
            with self._results_lock:
                self._failed_clients += 1
        finally:
            client.cleanup()

        with self._results_lock:
            self._results.extend(results)
            self._endpoints[str(client.endpoint)] += 1

    def run(self) -> WorkloadResults:
        """Run every worker to completion and aggregate the results."""
        start_time = datetime.now()
        start_perf = time.perf_counter()

        workers = [
            threading.Thread(target=self._worker, args=(i,), name=f"tell-worker-{i}")
            for i in range(self.config.threads)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        results = WorkloadResults(
            threads=self.config.threads,
            operations_per_thread=self.config.operations_per_thread,
            start_time=start_time.isoformat(),
            end_time=datetime.now().isoformat(),
            total_duration_seconds=time.perf_counter() - start_perf,
            failed_clients=self._failed_clients,
            endpoints=dict(self._endpoints),
        )
        for result in self._results:
            results.add(result)
        results.calculate_stats()
        return results


def run_workload(config: WorkloadConfig,
                 client_factory: Callable[[], TellStoreClient]) -> WorkloadResults:
    """Convenience wrapper around WorkloadRunner."""
    return WorkloadRunner(config, client_factory).run()


def print_results(results: WorkloadResults) -> None:
    """Print results in a readable format."""
    print("=" * 60)
    print("                    WORKLOAD RESULTS")
    print("=" * 60)

    success_pct = (results.successful_requests / results.total_requests * 100
                   if results.total_requests > 0 else 0)

    print(f"Total Requests:     {results.total_requests:,}")
    print(f"Successful:         {results.successful_requests:,} ({success_pct:.2f}%)")
    print(f"Failed:             {results.failed_requests:,} ({results.error_rate:.2f}%)")
    if results.failed_clients:
        print(f"Failed Clients:     {results.failed_clients:,}")

    print("-" * 60)

    print(f"Total Time:         {results.total_duration_seconds:.2f} seconds")
    print(f"Requests/Second:    {results.requests_per_second:,.2f}")

    print()
    print("Latency (ms):")
    print(f"  Min:              {results.latency_min:.2f}")
    print(f"  Max:              {results.latency_max:.2f}")
    print(f"  Mean:             {results.latency_mean:.2f}")
    print(f"  Median:           {results.latency_median:.2f}")
    print(f"  P95:              {results.latency_p95:.2f}")
    print(f"  P99:              {results.latency_p99:.2f}")

    print()
    print("Operations:")
    for operation, by_status in sorted(results.operations.items()):
        breakdown = ", ".join(f"{status}: {count:,}" for status, count in sorted(by_status.items()))
        print(f"  {operation:<18}{sum(by_status.values()):,} ({breakdown})")

    print()
    print("Endpoints:")
    for endpoint, count in sorted(results.endpoints.items()):
        print(f"  {endpoint:<18}{count} client(s)")

    print("=" * 60)
