import argparse
import functools
import json
import os
import sys

from mpi4py import MPI

from sort_algorithms.buffers import BufferAllocationError
from sort_algorithms.pipeline_sort import (
    DEFAULT_DIVISOR,
    ConvergenceError,
    SortConfig,
    make_random_slice,
    make_worst_case_slice,
    pipeline_sort,
    resolve_length,
    validate_parameters,
)
from scripts.utils import (
    benchmark_algorithm,
    globally_sorted,
    print_slices_in_rank_order,
    rank_print,
)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Pipeline border-exchange sort")
    parser.add_argument(
        "--n", type=int, default=None,
        help="Global number of elements (default: 1000000, or 40 with --debug)"
    )
    parser.add_argument(
        "--divisor", type=int, default=DEFAULT_DIVISOR,
        help="Border divisor D, border width is slice length // D (default: 2)"
    )
    parser.add_argument(
        "--no-merge", dest="use_merge", action="store_false",
        help="Sort the whole slice every round instead of merging after the first one"
    )
    parser.add_argument(
        "--short-circuit", dest="full_converge", action="store_false",
        help="Stop publishing boundary flags at the first unsorted boundary"
    )
    parser.add_argument("--debug", action="store_true", help="Print per-phase traces")
    parser.add_argument(
        "--max-rounds", type=int, default=None,
        help="Give up after this many rounds (default: no limit)"
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Use random input with this seed instead of the reversed sequence"
    )
    parser.add_argument(
        "--verify", action="store_true",
        help="Gather the result on rank 0 and check it"
    )
    parser.add_argument("--json", dest="json_file", default=None, help="Append timings to this JSON file")
    return parser.parse_args(argv)


def append_result(json_file, record):
    existing_results = []
    if os.path.exists(json_file) and os.path.getsize(json_file) > 0:
        with open(json_file, "r") as f:
            existing_results = json.load(f)
    existing_results.append(record)
    directory = os.path.dirname(json_file)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(json_file, "w") as f:
        json.dump(existing_results, f, indent=4)


def main(argv=None):
    """
    MPI entrypoint.

    Example:
    --------
    mpirun -np 4 python3 -m benchmarks.benchmark_sort --n 100000 --divisor 3 --verify

    Returns
    -------
    int
        Process exit status: 0 on success, 1 on allocation failure,
        2 on invalid parameters, 3 when the pipeline does not converge.
    """
    comm = MPI.COMM_WORLD
    rank = comm.Get_rank()
    size = comm.Get_size()

    args = parse_args(argv)
    config = SortConfig(
        n=args.n,
        divisor=args.divisor,
        use_merge=args.use_merge,
        full_converge=args.full_converge,
        debug=args.debug,
        max_rounds=args.max_rounds,
    )
    n = resolve_length(config)
    try:
        validate_parameters(n, size, config.divisor)
    except ValueError as e:
        if rank == 0:
            print(f"Invalid parameters: {e}", file=sys.stderr, flush=True)
        return 2

    if args.seed is None:
        loader = make_worst_case_slice
    else:
        loader = functools.partial(make_random_slice, seed=args.seed)

    original = []

    def keep_original(out, n, rank, size):
        loader(out, n, rank, size)
        if args.verify:
            original.append(out.copy())

    if config.debug:
        rank_print(rank, "Populating array")

    try:
        total_time, result = benchmark_algorithm(pipeline_sort, config, loader=keep_original, comm=comm)
    except BufferAllocationError as e:
        print(e, flush=True)
        return 1
    except ConvergenceError as e:
        print(e, flush=True)
        return 3

    if config.debug:
        if rank == 0:
            print("All process sorted", flush=True)
            print("\nSorted array", flush=True)
        print_slices_in_rank_order(comm, result.values)
    elif rank == 0:
        print(f"Array sorted in {result.elapsed:f}", flush=True)

    if args.verify:
        correct = globally_sorted(comm, result.values, original[0])
        if rank == 0:
            print(f"correct: {correct}", flush=True)

    if rank == 0 and args.json_file:
        append_result(args.json_file, {
            "mpi_size": size,
            "input_size": n,
            "divisor": config.divisor,
            "use_merge": config.use_merge,
            "full_converge": config.full_converge,
            "rounds": result.rounds,
            "time": result.elapsed,
            "total_time": total_time,
        })
    return 0


if __name__ == "__main__":
    sys.exit(main())
