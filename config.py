import logging

# General
LOG_LEVEL = logging.INFO  # DEBUG for per-trial detail
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s'
LOG_FILE = "echo_benchmark.log" # Will be created in the working directory
RESULTS_DIR = "results"  # For per-trial CSV and the run summary

# Echo responder
ECHO_HOST = '0.0.0.0'
ECHO_PORT = 6661
ECHO_READ_SIZE = 65536  # Max bytes pulled per read event, on both ends

# Targets
DIRECT_HOST = '127.0.0.1'
DIRECT_PORT = 6661   # Echo responder reached without the intermediary
PROXIED_HOST = '127.0.0.1'
PROXIED_PORT = 6543  # Intermediary under test, forwarding to the echo responder

# Benchmark Config
BENCHMARK_NUM_TRIALS = 200             # Trials launched per target
BENCHMARK_PAYLOAD_SIZE = 32768         # Bytes per send, 2**15
BENCHMARK_TEST_DURATION_SECONDS = 5.0  # Per-trial duration, measured by the trial itself
BENCHMARK_PROXIED_DELAY_SECONDS = 0.001
BENCHMARK_DIRECT_DELAY_FACTOR = 1.5    # direct_delay = factor * duration
BENCHMARK_AGGREGATION_WAIT_FACTOR = 3  # wait window = factor * duration
BENCHMARK_MAX_IN_FLIGHT = None         # None means unbounded fan-out
